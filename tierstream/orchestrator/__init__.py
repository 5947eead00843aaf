from tierstream.orchestrator.core import RoundLoop, RoundOutcome
from tierstream.orchestrator.debate import DebateEngine, DebateTurn

__all__ = ["DebateEngine", "DebateTurn", "RoundLoop", "RoundOutcome"]
