from uvaclient.cli import app

app(prog_name="uvac")
