# dewey/entities.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()

MAX_WORK_ITEMS = 10
EPHEMERAL_FLAG = 64

OptionValue = Union[str, bool, int, float]


class GenerationKind(str, Enum):
    SYNOPSIS = "synopsis"
    DISCUSSION = "discussion"
    CONTENT_WARNINGS = "content-warnings"
    RECOMMENDATIONS = "recommendations"


class PipelineState(str, Enum):
    RECEIVED = "received"
    ACKNOWLEDGED = "acknowledged"
    RESOLVING = "resolving"
    ROUTING = "routing"
    GENERATING = "generating"
    DELIVERING = "delivering"
    DONE = "done"


class TargetMessage(BaseModel):
    """Message a context-menu command was invoked on."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    content: str = ""
    poll_answers: Tuple[str, ...] = ()


class CommandInvocation(BaseModel):
    """
    One user-triggered command. Built from the inbound interaction payload,
    consumed once by the orchestrator, never mutated.
    """

    model_config = ConfigDict(frozen=True)

    command: str
    options: Dict[str, OptionValue] = {}
    subcommand: Optional[str] = None
    channel_id: Optional[str] = None
    guild_id: Optional[str] = None
    application_id: str = ""
    token: str = ""
    is_message_command: bool = False
    target_message: Optional[TargetMessage] = None

    def string_option(self, name: str) -> str:
        value = self.options.get(name)
        return value if isinstance(value, str) else ""

    def bool_option(self, name: str, default: bool = False) -> bool:
        value = self.options.get(name)
        return value if isinstance(value, bool) else default

    def int_option(self, name: str, default: int) -> int:
        value = self.options.get(name)
        if isinstance(value, bool) or not isinstance(value, int):
            return default
        return value


class GenerationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    work_item: str
    content: str
    success: bool = True


class DeliveryTarget(BaseModel):
    """
    Where artifacts for one invocation go. thread_id None means the invoking
    channel (through the interaction follow-up webhook).
    """

    model_config = ConfigDict(frozen=True)

    channel_id: Optional[str] = None
    thread_id: Optional[str] = None
    fell_back: bool = False

    @property
    def is_thread(self) -> bool:
        return self.thread_id is not None


class DeferredJob(BaseModel):
    """Work descriptor handed from phase 1 (acknowledge) to phase 2 (run_deferred)."""

    type: str = "deferred_processing"
    interaction: Dict[str, Any]
    provider: Optional[str] = None


class Acknowledgment(BaseModel):
    response: Dict[str, Any]
    job: Optional[DeferredJob] = None

    @property
    def deferred(self) -> bool:
        return self.job is not None


class PipelineRun:
    """Per-invocation state record. Owned by one run_deferred call."""

    def __init__(self, invocation: CommandInvocation):
        self.invocation = invocation
        self.state = PipelineState.RECEIVED
        self.history: List[PipelineState] = [PipelineState.RECEIVED]
        self.work_items: List[str] = []
        self.results: List[GenerationResult] = []
        self.target: Optional[DeliveryTarget] = None

    def advance(self, state: PipelineState) -> None:
        if self.state == PipelineState.DONE:
            return
        self.state = state
        self.history.append(state)


class QueueMessage(Base):
    __tablename__ = "queue_messages"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    sender_id = Column(String, nullable=False)
    receiver_id = Column(String, nullable=False)
    type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
