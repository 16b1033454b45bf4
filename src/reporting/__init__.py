"""Run reporting."""

from reporting.report import RolloutReport, StageResult

__all__ = ['RolloutReport', 'StageResult']
