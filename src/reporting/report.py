"""Run reporting and end-of-run summary."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from common import FAILED, SKIPPED, SOFT_OUTCOMES


@dataclass
class StageResult:
    """Outcome of one stage."""
    name: str
    description: str
    status: str  # 'applied', 'skipped', 'ready', 'timed-out', 'degraded', 'failed', 'removed'
    message: str = ''
    duration: float = 0.0
    follow_up: list[str] = field(default_factory=list)
    soft: bool = False  # failed but tolerated
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def degraded(self) -> bool:
        return self.status in SOFT_OUTCOMES or (self.status == FAILED and self.soft)


@dataclass
class RolloutReport:
    """Collects per-stage outcomes and writes report files."""
    sequence: str
    namespace: str
    report_dir: Optional[Path] = None
    stages: list[StageResult] = field(default_factory=list)
    state: str = 'init'
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    success: bool = False
    aborted: bool = False

    _stage_start: Optional[datetime] = field(default=None, repr=False)

    def start(self):
        """Mark run start."""
        self.started_at = datetime.now()

    def start_stage(self, _name: str, _description: str):
        """Mark stage start."""
        self._stage_start = datetime.now()

    def record(self, name: str, description: str, status: str, message: str = '',
               duration: float = 0.0, follow_up: Optional[list[str]] = None, soft: bool = False):
        """Record a finished stage."""
        now = datetime.now()
        if duration == 0.0 and self._stage_start:
            duration = (now - self._stage_start).total_seconds()
        self.stages.append(StageResult(
            name=name,
            description=description,
            status=status,
            message=message,
            duration=duration,
            follow_up=list(follow_up or []),
            started_at=self._stage_start,
            finished_at=now,
            soft=soft,
        ))
        self._stage_start = None

    def skip_stage(self, name: str, description: str, reason: str = ''):
        """Record skipped stage."""
        self.stages.append(StageResult(
            name=name,
            description=description,
            status=SKIPPED,
            message=reason,
        ))

    def get(self, name: str) -> Optional[StageResult]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    @property
    def degraded(self) -> list[StageResult]:
        return [s for s in self.stages if s.degraded]

    @property
    def duration(self) -> float:
        if self.finished_at and self.started_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def finish(self, success: bool, state: str, aborted: bool = False):
        """Finalize report and write files."""
        self.finished_at = datetime.now()
        self.success = success
        self.state = state
        self.aborted = aborted
        if self.report_dir is not None:
            self.report_dir.mkdir(parents=True, exist_ok=True)
            self._write_json()
            self._write_markdown()

    def _write_json(self):
        """Write JSON report."""
        data = self.to_dict()
        data['started_at'] = self.started_at.isoformat() if self.started_at else None
        data['finished_at'] = self.finished_at.isoformat() if self.finished_at else None
        filename = self._report_filename('json')
        with open(filename, 'w', encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def _write_markdown(self):
        """Write markdown report."""
        status = 'ABORTED' if self.aborted else ('PASSED' if self.success else 'FAILED')

        lines = [
            f"# {self.sequence}",
            "",
            f"**Namespace**: {self.namespace}",
            f"**Status**: {status}",
            f"**Date**: {self.started_at.strftime('%Y-%m-%d %H:%M:%S') if self.started_at else 'N/A'}",
            f"**Duration**: {self.duration:.1f}s",
            "",
            "## Stages",
            "",
            "| Stage | Status | Duration | Message |",
            "|-------|--------|----------|---------|",
        ]
        for s in self.stages:
            lines.append(f"| {s.name} | {s.status} | {s.duration:.1f}s | {s.message} |")

        if self.degraded:
            lines.extend(["", "## Follow-up", ""])
            for s in self.degraded:
                for cmd in s.follow_up:
                    lines.append(f"- `{cmd}` ({s.name})")

        lines.extend(["", "---", f"Generated: {datetime.now().isoformat()}"])

        filename = self._report_filename('md')
        with open(filename, 'w', encoding="utf-8") as f:
            f.write('\n'.join(lines))

    def _report_filename(self, ext: str) -> Path:
        """Generate report filename: <timestamp>.<sequence>.<status>.<ext>."""
        assert self.report_dir is not None
        timestamp = self.started_at.strftime('%Y%m%d-%H%M%S') if self.started_at else 'unknown'
        status = 'passed' if self.success else 'failed'
        return self.report_dir / f"{timestamp}.{self.sequence}.{status}.{ext}"

    def to_dict(self) -> dict:
        """Return report as dictionary for JSON output."""
        result: dict = {
            'sequence': self.sequence,
            'namespace': self.namespace,
            'success': self.success,
            'aborted': self.aborted,
            'state': self.state,
            'duration_seconds': round(self.duration, 1),
            'stages': [
                {
                    'name': s.name,
                    'status': s.status,
                    'message': s.message,
                    'duration': round(s.duration, 1),
                    **({'follow_up': s.follow_up} if s.follow_up else {}),
                }
                for s in self.stages
            ],
        }

        # Include error message on failure
        if not self.success:
            for s in self.stages:
                if s.status == FAILED and not s.soft and s.message:
                    result['error'] = s.message
                    break
        return result

    def print_summary(self, hints: Optional[list[str]] = None):
        """Print the end-of-run summary box."""
        print("")
        print("==============================================")
        print(f"  Feast {self.sequence.capitalize()} Summary")
        print("==============================================")
        print(f"  Namespace:      {self.namespace}")
        for s in self.stages:
            print(f"  {s.name + ':':<15} {s.status}")
        print("==============================================")

        if self.degraded:
            print("")
            print("Needs follow-up:")
            for s in self.degraded:
                print(f"  {s.name}: {s.message}")
                for cmd in s.follow_up:
                    print(f"    {cmd}")

        if hints:
            print("")
            print("Useful commands:")
            for cmd in hints:
                print(f"  {cmd}")
        print("")
