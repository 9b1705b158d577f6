__all__ = [
    # Context
    "StakeContext",
    "PipelineConfig",
    # Models
    "Challenge",
    "ChallengeDelta",
    "Milestone",
    "QuizResult",
    "QuizSubmission",
    "Rubric",
    "Source",
    "WalletSummary",
    "LedgerSummary",
    # Components
    "ChallengeStore",
    "LedgerClient",
    "NetworkGuard",
    "NetworkProfile",
    "TransactionPipeline",
    "WalletSession",
    "LocalWallet",
    "evaluate",
    # Outcomes
    "OutcomeStatus",
    "Stage",
    "TxOutcome",
    # Errors
    "ErrorKind",
    "LedgerError",
    "NetworkError",
    "SessionError",
    "FetchError",
    "ChallengeNotFound",
    "StoreInvariantError",
    # Schema
    "SchemaValidationError",
    "SchemaRegistry",
]

from .canon.schemas import SchemaRegistry, SchemaValidationError
from .config import PipelineConfig
from .context import StakeContext
from .covenant.evaluator import evaluate
from .covenant.models import (
    Challenge,
    ChallengeDelta,
    LedgerSummary,
    Milestone,
    QuizResult,
    QuizSubmission,
    Rubric,
    Source,
    WalletSummary,
)
from .covenant.store import (
    ChallengeNotFound,
    ChallengeStore,
    FetchError,
    StoreInvariantError,
)
from .pneuma.errors import ErrorKind, LedgerError
from .pneuma.ledger import LedgerClient
from .pneuma.network import NetworkError, NetworkGuard, NetworkProfile
from .pneuma.tx import OutcomeStatus, Stage, TransactionPipeline, TxOutcome
from .sigil.session import SessionError, WalletSession
from .sigil.wallet import LocalWallet
