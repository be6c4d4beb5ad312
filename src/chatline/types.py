"""Shared literal types."""

from __future__ import annotations

from typing import Literal

Role = Literal["system", "user", "assistant", "tool"]
StepType = Literal["thinking", "tool_call", "tool_result", "final_answer", "error"]
