"""Flow step contract shared by every conversation handler"""

import unicodedata
from dataclasses import dataclass, field
from typing import Optional

from ...models import Customer
from ..ingestion.schemas import NormalizedMessage

MENU_COMMANDS = {"MENU", "INICIO"}
YES_ANSWERS = {"YES", "Y", "SIM", "S"}
NO_ANSWERS = {"NO", "N", "NAO"}
SKIP_ANSWERS = {"SKIP", "PULAR"}
CONFIRM_ANSWERS = {"OK", "CONFIRM", "CONFIRMAR"}


def normalize_command(text: str) -> str:
    """Uppercase without accents: "não" -> "NAO", "Início" -> "INICIO" """
    decomposed = unicodedata.normalize("NFKD", (text or "").strip())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).upper()


def parse_choice(text: str, size: int) -> Optional[int]:
    """0-based index from a 1-based option number, None when out of range"""
    value = (text or "").strip()
    if not value.isdigit():
        return None
    index = int(value) - 1
    return index if 0 <= index < size else None


@dataclass
class Reply:
    body: str
    buttons: Optional[list[dict]] = None


@dataclass
class FlowContext:
    customer: Customer
    message: NormalizedMessage
    state: str
    data: dict

    @property
    def text(self) -> str:
        return self.message.content

    @property
    def command(self) -> str:
        return normalize_command(self.message.content)


@dataclass
class FlowResult:
    """Next persisted state, scratch-pad and the replies to send"""

    state: str
    data: dict = field(default_factory=dict)
    replies: list[Reply] = field(default_factory=list)

    @classmethod
    def stay(cls, ctx: FlowContext, *bodies: str) -> "FlowResult":
        """Re-prompt without touching state or scratch-pad"""
        return cls(ctx.state, dict(ctx.data), [Reply(body) for body in bodies])

    @classmethod
    def to(cls, state: str, data: Optional[dict] = None, *bodies: str) -> "FlowResult":
        return cls(state, data or {}, [Reply(body) for body in bodies])
