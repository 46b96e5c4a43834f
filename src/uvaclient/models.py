from dataclasses import dataclass, field

# Bucket for entries the analyzer did not classify
SYMBOL_KIND = "symbol"


@dataclass(frozen=True)
class Location:
    """Represents a position in a named source file.

    offset/length index into the full document text and are what ranges are
    rebuilt from. line/column are kept for legacy consumers (definition lookup
    and diagnostics).
    """
    file: str
    line: int
    column: int
    offset: int
    length: int = 0

    def __post_init__(self):
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset}")
        if self.length < 0:
            raise ValueError(f"length must be >= 0, got {self.length}")


@dataclass(frozen=True)
class Position:
    """Zero-based line/column pair."""
    line: int
    column: int


@dataclass(frozen=True)
class TokenLocation:
    """Explicit start/end pair used by syntax tokens."""
    file: str
    start: Position
    end: Position


@dataclass(frozen=True)
class Declaration:
    """A named symbol declared by the analyzed source."""
    name: str
    location: Location | None = None  # None for built-ins
    kind: str | None = None


@dataclass(frozen=True)
class Reference:
    """A use of a symbol."""
    name: str
    kind: str
    location: Location


@dataclass(frozen=True)
class LintWarning:
    message: str
    kind: str
    location: Location


@dataclass(frozen=True)
class LintError:
    message: str
    kind: str
    location: Location


@dataclass(frozen=True)
class Token:
    """A syntax-highlighting token, independent of declarations/references."""
    kind: str
    location: TokenLocation
    modifier: str | None = None


@dataclass(frozen=True)
class AnalysisResult:
    """Everything the analyzer reported for one request.

    Built fresh per request and never mutated afterwards. Collections are
    always present; an unusable response becomes ``AnalysisResult.empty()``.
    """
    declarations: tuple[Declaration, ...] = ()
    references: tuple[Reference, ...] = ()
    tokens: tuple[Token, ...] = ()
    warnings: tuple[LintWarning, ...] = ()
    errors: tuple[LintError, ...] = ()
    elapsed: float | None = field(default=None, compare=False)  # as reported by the analyzer

    @classmethod
    def empty(cls) -> "AnalysisResult":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not (
            self.declarations
            or self.references
            or self.tokens
            or self.warnings
            or self.errors
        )
