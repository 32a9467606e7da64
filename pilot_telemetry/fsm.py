from __future__ import annotations

from enum import StrEnum

from statemachine import State, StateMachine


class PipelinePhase(StrEnum):
    uninitialized = "uninitialized"
    active = "active"
    disabled = "disabled"


class PipelineFSM(StateMachine):
    """Lifecycle of the analytics pipeline.

    - uninitialized -> active once configuration is loaded with analytics enabled
      and consent granted (or later, the first time both hold).
    - active <-> disabled via set_enabled.
    - uninitialized -> disabled when analytics is switched off before ever
      becoming active.

    Only `active` buffers events; the pipeline still re-checks consent per call.
    """

    uninitialized = State(
        PipelinePhase.uninitialized.value,
        value=PipelinePhase.uninitialized.value,
        initial=True,
    )
    active = State(PipelinePhase.active.value, value=PipelinePhase.active.value)
    disabled = State(PipelinePhase.disabled.value, value=PipelinePhase.disabled.value)

    activate = uninitialized.to(active)
    enable = disabled.to(active)
    disable = uninitialized.to(disabled) | active.to(disabled)

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase(str(self.current_state.value))
