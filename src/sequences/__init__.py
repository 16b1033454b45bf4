"""Sequence definitions and orchestration."""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from common import FAILED, ActionResult, FatalError
from config import DriverConfig
from kube import ClusterClient
from reporting import RolloutReport

logger = logging.getLogger(__name__)

PREVIOUS_STAGE_FAILED = 'previous stage failed'


class SequenceState(enum.Enum):
    """States the sequencer passes through.

    Rollout: INIT -> PREREQS_CHECKED -> RENDERED -> NAMESPACE_READY ->
    OPERATOR_READY -> DATASTORES_READY -> FEATURE_STORE_READY ->
    POST_APPLY_TRIGGERED -> SUMMARIZED.
    """
    INIT = 'init'
    PREREQS_CHECKED = 'prereqs-checked'
    RENDERED = 'rendered'
    NAMESPACE_READY = 'namespace-ready'
    OPERATOR_READY = 'operator-ready'
    DATASTORES_READY = 'datastores-ready'
    FEATURE_STORE_READY = 'feature-store-ready'
    POST_APPLY_TRIGGERED = 'post-apply-triggered'
    FEATURE_STORE_REMOVED = 'feature-store-removed'
    PODS_DRAINED = 'pods-drained'
    DATASTORES_REMOVED = 'datastores-removed'
    OPERATOR_REMOVED = 'operator-removed'
    NAMESPACE_REMOVED = 'namespace-removed'
    CLEANED_UP = 'cleaned-up'
    SUMMARIZED = 'summarized'
    ABORTED = 'aborted'


@dataclass
class Stage:
    """One step of a sequence.

    Attributes:
        name: Stage identifier (e.g. 'datastores')
        action: Object with run(config, context) -> ActionResult
        description: Human-readable description
        state: State reached once the stage has run or been skipped
        skip: If True the stage makes no cluster calls
        skip_reason: Why the stage is skipped (for logs and the report)
    """
    name: str
    action: Any
    description: str
    state: SequenceState
    skip: bool = False
    skip_reason: str = ''


@runtime_checkable
class Sequence(Protocol):
    """Protocol for sequence definitions.

    Class attributes:
        name: Command name (e.g. 'setup')
        description: Human-readable description
        requires_confirmation: If True, the CLI asks before running (default: False)
    """
    name: str
    description: str

    def get_stages(self, config: DriverConfig, kube: ClusterClient) -> list[Stage]:
        """Return the ordered stage list."""
        ...

    def summary_hints(self, config: DriverConfig) -> list[str]:
        """Commands worth running after the sequence."""
        ...


class Sequencer:
    """Runs a sequence's stages in order and records their outcomes.

    Soft outcomes (timeouts, degraded stages, tolerated failures) are
    recorded and the next stage runs. A failed stage that is not tolerated
    stops the remaining stages. A FatalError aborts the run immediately.
    No stage is ever rolled back.
    """

    def __init__(
        self,
        sequence: Sequence,
        config: DriverConfig,
        kube: ClusterClient,
    ):
        self.sequence = sequence
        self.config = config
        self.kube = kube
        self.state = SequenceState.INIT
        self.aborted = False
        self.error: Optional[FatalError] = None
        self.report = RolloutReport(
            sequence=sequence.name,
            namespace=config.namespace,
            report_dir=config.report_dir,
        )
        self.context: dict[str, Any] = {}

    def preview(self) -> bool:
        """Show what would be executed without running. Returns True."""
        stages = list(self.sequence.get_stages(self.config, self.kube))

        print("")
        print("═══════════════════════════════════════════════════════════════")
        print(f"  DRY-RUN: {self.sequence.name}")
        print(f"  Namespace: {self.config.namespace}")
        print("═══════════════════════════════════════════════════════════════")
        print("")

        print("Stages to execute:")
        run_count = 0
        skip_count = 0
        for stage in stages:
            action_type = type(stage.action).__name__
            if stage.skip:
                print(f"  [SKIP] {stage.name}: {stage.description} ({stage.skip_reason})")
                skip_count += 1
            else:
                print(f"  [ OK ] {stage.name}: {stage.description}")
                run_count += 1
            print(f"         Action: {action_type}")
            print("")

        print("═══════════════════════════════════════════════════════════════")
        print(f"  Summary: {run_count} stages to execute, {skip_count} to skip")
        print("  Mode: DRY-RUN (no changes made)")
        print("═══════════════════════════════════════════════════════════════")
        print("")
        return True

    def run(self) -> bool:
        """Run all stages. Returns False on a stage failure or fatal abort."""
        if self.config.dry_run:
            return self.preview()

        logger.info(f"Starting {self.sequence.name} in namespace '{self.config.namespace}'")
        self.report.start()
        stages = self.sequence.get_stages(self.config, self.kube)
        success = True
        start_time = time.time()

        for index, stage in enumerate(stages):
            if stage.skip:
                logger.info(f"Skipping stage: {stage.name} ({stage.skip_reason})")
                self.report.skip_stage(stage.name, stage.description, stage.skip_reason)
                self.state = stage.state
                continue

            logger.info(f"Running stage: {stage.name} - {stage.description}")
            self.report.start_stage(stage.name, stage.description)

            try:
                result = stage.action.run(self.config, self.context)
            except FatalError as e:
                logger.error(f"Stage {stage.name} failed: {e}")
                self.report.record(stage.name, stage.description, FAILED, str(e))
                self.error = e
                self.aborted = True
                success = False
                break
            except Exception as e:
                logger.exception(f"Stage {stage.name} raised exception")
                self.report.record(stage.name, stage.description, FAILED, str(e))
                self.aborted = True
                success = False
                break

            self.context.update(result.context_updates or {})
            if not self._handle_result(stage, result):
                success = False
                break
            self.state = stage.state

        if not success:
            for stage in stages[index + 1:]:
                self.report.skip_stage(stage.name, stage.description, PREVIOUS_STAGE_FAILED)

        total_time = time.time() - start_time
        final_state = SequenceState.ABORTED if self.aborted else SequenceState.SUMMARIZED
        self.state = final_state
        logger.info(f"{self.sequence.name.capitalize()} finished in {total_time:.1f}s ({final_state.value})")
        self.report.finish(success, final_state.value, aborted=self.aborted)
        return success

    def _handle_result(self, stage: Stage, result: ActionResult) -> bool:
        """Record a stage result. Returns False if the sequence must stop."""
        if result.success:
            self.report.record(stage.name, stage.description, result.outcome,
                               result.message, result.duration, result.follow_up)
            if result.degraded:
                logger.warning(f"Stage {stage.name} {result.outcome}: {result.message}")
                self._log_follow_up(result)
            else:
                logger.info(f"Stage {stage.name} {result.outcome}: {result.message}")
            return True

        self.report.record(stage.name, stage.description, FAILED, result.message,
                           result.duration, result.follow_up, soft=result.continue_on_failure)
        if result.continue_on_failure:
            logger.warning(f"Stage {stage.name} failed (continuing): {result.message}")
            self._log_follow_up(result)
            return True

        logger.error(f"Stage {stage.name} failed: {result.message}")
        self._log_follow_up(result)
        return False

    @staticmethod
    def _log_follow_up(result: ActionResult) -> None:
        if result.follow_up:
            logger.warning("  Check with:")
            for cmd in result.follow_up:
                logger.warning(f"    {cmd}")


# Registry of available sequences
_sequences: dict[str, type[Sequence]] = {}


def register_sequence(cls: type[Sequence]) -> type[Sequence]:
    """Decorator to register a sequence class."""
    _sequences[cls.name] = cls
    return cls


def get_sequence(name: str) -> Sequence:
    """Get a sequence instance by name."""
    if name not in _sequences:
        available = list(_sequences.keys())
        raise ValueError(f"Unknown sequence: {name}. Available: {available}")
    return _sequences[name]()


def list_sequences() -> list[str]:
    """List available sequence names."""
    return sorted(_sequences.keys())


# Import sequences to trigger registration
from sequences import rollout  # noqa: E402, F401
from sequences import teardown  # noqa: E402, F401
