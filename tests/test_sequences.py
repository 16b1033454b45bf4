#!/usr/bin/env python3
"""Tests for the sequencer and the setup/teardown sequences."""

import json
from dataclasses import dataclass
from unittest.mock import MagicMock

import pytest

from common import FAILED, SKIPPED, ActionResult
from sequences import (
    SequenceState,
    Sequencer,
    Stage,
    get_sequence,
    list_sequences,
)


def _run(name, config, kube):
    sequencer = Sequencer(get_sequence(name), config, kube)
    success = sequencer.run()
    return sequencer, success


def _statuses(sequencer):
    return {s.name: s.status for s in sequencer.report.stages}


class TestRegistry:
    """Test sequence registration."""

    def test_list(self):
        assert list_sequences() == ['setup', 'teardown']

    def test_unknown(self):
        with pytest.raises(ValueError, match='Unknown sequence'):
            get_sequence('upgrade')

    def test_teardown_requires_confirmation(self):
        assert getattr(get_sequence('teardown'), 'requires_confirmation', False) is True
        assert getattr(get_sequence('setup'), 'requires_confirmation', False) is False

    def test_stage_order(self, fake_kube, make_config):
        setup = [s.name for s in get_sequence('setup').get_stages(make_config(), fake_kube)]
        teardown = [s.name for s in get_sequence('teardown').get_stages(make_config(), fake_kube)]
        assert setup == ['prereqs', 'render', 'namespace', 'operator', 'datastores', 'feature_store', 'apply_job']
        assert teardown == ['feature_store', 'drain', 'datastores', 'operator', 'namespace', 'cleanup']


class TestSetup:
    """Test the setup sequence end to end against the in-memory cluster."""

    def test_full_rollout(self, fake_kube, make_config, no_sleep):
        config = make_config(namespace='ml', create_namespace=True, install_operator=True)
        sequencer, success = _run('setup', config, fake_kube)

        assert success is True
        assert sequencer.aborted is False
        assert sequencer.state is SequenceState.SUMMARIZED
        assert _statuses(sequencer) == {
            'prereqs': 'ready',
            'render': 'applied',
            'namespace': 'applied',
            'operator': 'ready',
            'datastores': 'ready',
            'feature_store': 'ready',
            'apply_job': 'ready',
        }
        assert 'ml' in fake_kube.namespaces
        assert fake_kube.names('featurestore') == {'example'}
        assert len(fake_kube.jobs) == 1
        assert sequencer.context['feature_store_name'] == 'example'

    def test_apply_order(self, fake_kube, make_config, no_sleep):
        """Namespace, operator, datastores and the CR are applied in dependency order."""
        config = make_config(create_namespace=True, install_operator=True)
        _run('setup', config, fake_kube)

        applies = [c[1] for c in fake_kube.calls if c[0] == 'apply']
        assert applies == ['install.yaml', 'postgres.yaml', 'redis.yaml', 'feast.yaml']
        ns_check = fake_kube.calls.index(('namespace_exists', 'feast'))
        assert ns_check < fake_kube.calls.index(('apply', 'install.yaml'))

    @pytest.mark.parametrize('install_operator', [False, True])
    @pytest.mark.parametrize('skip_datastores', [False, True])
    @pytest.mark.parametrize('skip_feast', [False, True])
    @pytest.mark.parametrize('skip_apply', [False, True])
    def test_skipped_stages_make_no_calls(self, fake_kube, make_config, no_sleep,
                                          install_operator, skip_datastores, skip_feast, skip_apply):
        """Skipped stages never touch the cluster and never skip later stages."""
        config = make_config(install_operator=install_operator, skip_datastores=skip_datastores,
                             skip_feast=skip_feast, skip_apply=skip_apply)
        sequencer, success = _run('setup', config, fake_kube)
        statuses = _statuses(sequencer)
        applied = {c[1] for c in fake_kube.calls if c[0] == 'apply'}

        assert success is True
        assert sequencer.state is SequenceState.SUMMARIZED
        assert list(statuses) == ['prereqs', 'render', 'namespace', 'operator',
                                  'datastores', 'feature_store', 'apply_job']

        assert (statuses['operator'] == SKIPPED) is (not install_operator)
        assert ('install.yaml' in applied) is install_operator
        assert not any(c[0] == 'wait' for c in fake_kube.calls) or install_operator

        assert (statuses['datastores'] == SKIPPED) is skip_datastores
        assert ('postgres.yaml' in applied) is (not skip_datastores)
        assert ('redis.yaml' in applied) is (not skip_datastores)
        assert any(c[:2] == ('get', 'pods') for c in fake_kube.calls) is (not skip_datastores)

        assert (statuses['feature_store'] == SKIPPED) is skip_feast
        assert ('feast.yaml' in applied) is (not skip_feast)

        apply_skipped = skip_feast or skip_apply
        assert (statuses['apply_job'] == SKIPPED) is apply_skipped
        assert any(c[:2] == ('get', 'cronjobs') for c in fake_kube.calls) is (not apply_skipped)
        assert bool(fake_kube.jobs) is (not apply_skipped)

    def test_missing_cronjob_is_degraded_but_summarized(self, fake_kube, make_config, no_sleep):
        fake_kube.creates_cronjob = False
        sequencer, success = _run('setup', make_config(), fake_kube)

        assert success is True
        assert sequencer.state is SequenceState.SUMMARIZED
        apply_stage = sequencer.report.get('apply_job')
        assert apply_stage.status == 'degraded'
        assert "feast apply" in apply_stage.follow_up[0]
        assert sequencer.report.degraded == [apply_stage]

    def test_feature_store_failed_stops_run(self, fake_kube, make_config, no_sleep):
        fake_kube.script('featurestore', ['Pending', 'Failed'], 'example')
        sequencer, success = _run('setup', make_config(), fake_kube)

        assert success is False
        assert sequencer.aborted is False
        assert sequencer.state is SequenceState.SUMMARIZED
        assert sequencer.report.get('feature_store').status == FAILED
        apply_stage = sequencer.report.get('apply_job')
        assert apply_stage.status == SKIPPED
        assert apply_stage.message == 'previous stage failed'
        assert not any(c[0] == 'create_job_from' for c in fake_kube.calls)

    def test_feature_store_timeout_still_triggers_apply(self, fake_kube, make_config, no_sleep):
        """A soft FeatureStore timeout lets the apply job run anyway."""
        fake_kube.script('featurestore', ['Pending'], 'example')
        sequencer, success = _run('setup', make_config(feast_timeout=20), fake_kube)

        assert success is True
        assert sequencer.report.get('feature_store').status == 'timed-out'
        assert sequencer.report.get('apply_job').status == 'ready'

    def test_apply_job_failure_is_soft(self, fake_kube, make_config, no_sleep):
        fake_kube.script('job', ['Failed'])
        sequencer, success = _run('setup', make_config(), fake_kube)

        assert success is True
        stage = sequencer.report.get('apply_job')
        assert stage.status == FAILED
        assert stage.soft is True
        assert stage in sequencer.report.degraded

    def test_missing_namespace_aborts(self, fake_kube, make_config):
        sequencer, success = _run('setup', make_config(namespace='ml'), fake_kube)

        assert success is False
        assert sequencer.aborted is True
        assert sequencer.state is SequenceState.ABORTED
        assert sequencer.report.aborted is True
        assert sequencer.report.get('namespace').status == FAILED
        assert '--create-namespace' in sequencer.report.to_dict()['error']
        assert fake_kube.mutations == []

    def test_unreachable_cluster_aborts_first(self, fake_kube, make_config):
        fake_kube.reachable = False
        sequencer, success = _run('setup', make_config(), fake_kube)

        assert sequencer.aborted is True
        statuses = _statuses(sequencer)
        assert statuses == {
            'prereqs': FAILED,
            'render': SKIPPED,
            'namespace': SKIPPED,
            'operator': SKIPPED,
            'datastores': SKIPPED,
            'feature_store': SKIPPED,
            'apply_job': SKIPPED,
        }
        assert sequencer.report.get('render').message == 'previous stage failed'
        assert sequencer.report.to_dict()['error'].startswith('Unable to connect')
        assert fake_kube.calls == [('cluster_info',)]

    def test_apply_rejection_aborts(self, fake_kube, make_config, no_sleep):
        fake_kube.rejected.add('redis.yaml')
        sequencer, success = _run('setup', make_config(), fake_kube)

        assert sequencer.aborted is True
        assert sequencer.report.get('datastores').status == FAILED
        assert sequencer.report.get('feature_store').status == SKIPPED
        assert sequencer.report.get('apply_job').message == 'previous stage failed'
        # No rollback of what was already applied
        assert 'postgres' in fake_kube.names('deployment')

    def test_dry_run_touches_nothing(self, fake_kube, make_config, capsys):
        config = make_config(dry_run=True, skip_apply=True)
        sequencer, success = _run('setup', config, fake_kube)

        assert success is True
        assert fake_kube.calls == []
        assert not config.generated_dir.exists()
        out = capsys.readouterr().out
        assert 'DRY-RUN: setup' in out
        assert '[SKIP] operator' in out
        assert '[SKIP] apply_job' in out
        assert '[ OK ] feature_store' in out

    def test_writes_report_files(self, fake_kube, make_config, tmp_path, no_sleep):
        report_dir = tmp_path / 'reports'
        sequencer, _ = _run('setup', make_config(report_dir=report_dir), fake_kube)

        json_files = list(report_dir.glob('*.setup.passed.json'))
        assert len(json_files) == 1
        assert len(list(report_dir.glob('*.setup.passed.md'))) == 1
        data = json.loads(json_files[0].read_text())
        assert data['state'] == 'summarized'
        assert [s['name'] for s in data['stages']][0] == 'prereqs'


class TestTeardown:
    """Test the teardown sequence."""

    @pytest.mark.parametrize('operator', [False, True])
    @pytest.mark.parametrize('skip_datastores', [False, True])
    @pytest.mark.parametrize('skip_feast', [False, True])
    def test_teardown_mirrors_setup(self, fake_kube, make_config, no_sleep,
                                    operator, skip_datastores, skip_feast):
        """Teardown with the same flags removes exactly what setup created."""
        flags = dict(skip_datastores=skip_datastores, skip_feast=skip_feast)
        _, ok = _run('setup', make_config(install_operator=operator, **flags), fake_kube)
        assert ok is True

        sequencer, success = _run('teardown', make_config(uninstall_operator=operator, **flags), fake_kube)

        assert success is True
        assert sequencer.state is SequenceState.SUMMARIZED
        assert fake_kube.resources == set()
        assert 'feast' in fake_kube.namespaces

    def test_stage_outcomes(self, fake_kube, make_config, no_sleep):
        _run('setup', make_config(), fake_kube)
        config = make_config(delete_namespace=True)
        sequencer, success = _run('teardown', config, fake_kube)

        assert success is True
        assert _statuses(sequencer) == {
            'feature_store': 'removed',
            'drain': 'removed',
            'datastores': 'removed',
            'operator': 'skipped',
            'namespace': 'removed',
            'cleanup': 'removed',
        }
        assert 'feast' not in fake_kube.namespaces
        assert not config.generated_dir.exists()

    def test_teardown_on_empty_cluster(self, fake_kube, make_config, no_sleep):
        """Nothing deployed: every delete is ignore-not-found, so teardown succeeds."""
        sequencer, success = _run('teardown', make_config(), fake_kube)

        assert success is True
        assert sequencer.report.get('cleanup').status == SKIPPED
        assert ('delete_resource', 'featurestore', 'example', 'feast') in fake_kube.calls

    def test_teardown_is_repeatable(self, fake_kube, make_config, no_sleep):
        _run('setup', make_config(), fake_kube)
        _, first = _run('teardown', make_config(), fake_kube)
        _, second = _run('teardown', make_config(), fake_kube)
        assert first is True
        assert second is True

    def test_teardown_in_other_namespace_leaves_staged_stack(self, fake_kube, make_config, no_sleep):
        """Files staged for 'feast' are not deleted by a teardown of 'ml'."""
        _run('setup', make_config(), fake_kube)
        deployed = set(fake_kube.resources)
        fake_kube.namespaces.add('ml')
        config = make_config(namespace='ml')

        sequencer, success = _run('teardown', config, fake_kube)

        assert success is True
        assert fake_kube.resources == deployed
        assert not any(c[0] == 'delete_manifest' for c in fake_kube.calls)
        assert ('delete_resource', 'featurestore', 'example', 'ml') in fake_kube.calls
        assert ('delete_resource', 'deployment', 'postgres', 'ml') in fake_kube.calls
        assert sequencer.report.get('cleanup').status == SKIPPED
        assert (config.generated_dir / 'feast.yaml').is_file()

    def test_operator_manifest_missing_is_degraded(self, fake_kube, make_config, tmp_path, no_sleep):
        config = make_config(uninstall_operator=True, operator_dir=tmp_path / 'gone')
        sequencer, success = _run('teardown', config, fake_kube)

        assert success is True
        assert sequencer.report.get('operator').status == 'degraded'

    def test_slow_drain_is_soft(self, fake_kube, make_config, no_sleep):
        fake_kube.script('pods', ['feast-example-online-1'], 'app.kubernetes.io/managed-by=feast-operator')
        sequencer, success = _run('teardown', make_config(), fake_kube)

        assert success is True
        assert sequencer.report.get('drain').status == 'timed-out'
        assert sequencer.report.get('datastores').status == 'removed'


@dataclass
class _Raise:
    name: str

    def run(self, config, context):
        raise RuntimeError("boom")


class TestSequencer:
    """Test sequencer mechanics with ad-hoc stages."""

    def _sequence(self, stages):
        sequence = MagicMock()
        sequence.name = 'custom'
        sequence.get_stages.return_value = stages
        return sequence

    def test_skipped_stage_advances_state(self, fake_kube, make_config):
        action = MagicMock()
        stages = [Stage('only', action, 'Only stage', SequenceState.RENDERED, skip=True, skip_reason='flag')]
        sequencer = Sequencer(self._sequence(stages), make_config(), fake_kube)

        assert sequencer.run() is True
        action.run.assert_not_called()
        assert sequencer.report.get('only').status == SKIPPED
        assert sequencer.report.get('only').message == 'flag'
        assert sequencer.state is SequenceState.SUMMARIZED

    def test_context_flows_between_stages(self, fake_kube, make_config):
        first = MagicMock()
        first.run.return_value = ActionResult(success=True, context_updates={'token': 'abc'})
        second = MagicMock()
        second.run.return_value = ActionResult(success=True)
        stages = [
            Stage('first', first, 'First', SequenceState.RENDERED),
            Stage('second', second, 'Second', SequenceState.NAMESPACE_READY),
        ]
        sequencer = Sequencer(self._sequence(stages), make_config(), fake_kube)

        sequencer.run()

        assert second.run.call_args[0][1]['token'] == 'abc'

    def test_unexpected_exception_aborts(self, fake_kube, make_config):
        after = MagicMock()
        stages = [
            Stage('explode', _Raise('explode'), 'Explode', SequenceState.RENDERED),
            Stage('after', after, 'After', SequenceState.NAMESPACE_READY),
        ]
        sequencer = Sequencer(self._sequence(stages), make_config(), fake_kube)

        assert sequencer.run() is False
        assert sequencer.aborted is True
        assert sequencer.report.get('explode').message == 'boom'
        after.run.assert_not_called()
        assert sequencer.report.get('after').status == SKIPPED
        assert sequencer.state is SequenceState.ABORTED
