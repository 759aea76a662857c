# -*- coding: utf-8 -*-
"""LocalRecordStore durum geçişleri için doğrulamalar."""

import unittest

from sync_fixtures import DEVICE_A, DEVICE_B, T0, FakeClock, TempDatabase

from rc_app.sync.conflict_handler import (
    CLIENT_WINS,
    LAST_WRITE_WINS,
    ConflictResolver,
    Resolution,
)
from rc_app.sync.local_store import LocalRecordStore, RowLockedError, RowNotFoundError
from rc_app.sync.models import ApplyAction, ServerRow, SyncOperation, SyncStatus


class LocalStoreTestCase(unittest.TestCase):

    def setUp(self):
        self.db = TempDatabase()
        self.clock = FakeClock(T0)
        self.store = LocalRecordStore(self.db.path, DEVICE_A, clock=self.clock)

    def tearDown(self):
        self.db.cleanup()

    def clean_row(self, local_id='L1', server_id='S1', server_updated_at=T0 + 20,
                  payload=None):
        """Sunucuyla eşleşmiş bir CLEAN satır hazırla."""
        self.store.put('clients', payload or {'name': 'Maria'}, local_id=local_id)
        sent = self.store.mark_in_flight('clients', [local_id])[0]
        self.store.acknowledge('clients', local_id, server_id, server_updated_at,
                               sent.inflight_updated_at, SyncOperation.UPSERT)
        return self.store.get('clients', local_id)


class TestLocalWrites(LocalStoreTestCase):

    def test_put_creates_pending_row(self):
        row = self.store.put('clients', {'name': 'Maria'}, local_id='L1')
        self.assertEqual(row.sync_status, SyncStatus.PENDING_UPSERT)
        self.assertEqual(row.updated_at, T0)
        self.assertEqual(row.device_id, DEVICE_A)
        self.assertIsNone(row.server_id)

    def test_put_generates_local_id(self):
        row = self.store.put('clients', {'name': 'Maria'})
        self.assertTrue(row.local_id)
        self.assertIsNotNone(self.store.get('clients', row.local_id))

    def test_updated_at_strictly_increases(self):
        self.store.put('clients', {'name': 'Maria'}, local_id='L1')
        row = self.store.put('clients', {'name': 'Maria S.'}, local_id='L1')
        self.assertEqual(row.updated_at, T0 + 1)

        self.clock.now = T0 - 1000
        row = self.store.put('clients', {'name': 'Maria Silva'}, local_id='L1')
        self.assertEqual(row.updated_at, T0 + 2)

    def test_put_rejects_non_dict_payload(self):
        with self.assertRaises(TypeError):
            self.store.put('clients', ['Maria'])

    def test_delete_of_never_sent_row_removes_it(self):
        self.store.put('clients', {'name': 'Maria'}, local_id='L1')
        self.assertTrue(self.store.delete('clients', 'L1'))
        self.assertIsNone(self.store.get('clients', 'L1'))
        self.assertEqual(self.store.count_pending(), 0)

    def test_delete_of_synced_row_marks_pending_delete(self):
        self.clean_row()
        self.assertFalse(self.store.delete('clients', 'L1'))
        row = self.store.get('clients', 'L1')
        self.assertEqual(row.sync_status, SyncStatus.PENDING_DELETE)
        self.assertEqual(self.store.list_rows('clients'), [])
        self.assertEqual(len(self.store.list_rows('clients', include_deleted=True)), 1)

    def test_put_on_pending_delete_is_refused(self):
        self.clean_row()
        self.store.delete('clients', 'L1')
        with self.assertRaises(RowLockedError):
            self.store.put('clients', {'name': 'Maria'}, local_id='L1')

    def test_delete_missing_row(self):
        with self.assertRaises(RowNotFoundError):
            self.store.delete('clients', 'nope')


class TestPushLifecycle(LocalStoreTestCase):

    def test_select_pending_orders_upserts_before_deletes(self):
        self.clean_row('L1', 'S1')
        self.store.delete('clients', 'L1')
        self.clock.now = T0 + 100
        self.store.put('clients', {'name': 'João'}, local_id='L2')

        pending = self.store.select_pending('clients', 10)
        self.assertEqual([r.local_id for r in pending], ['L2', 'L1'])

    def test_select_pending_respects_limit_and_exclude(self):
        for i in range(4):
            self.clock.now = T0 + i
            self.store.put('clients', {'name': f'Nome {i}'}, local_id=f'L{i}')
        first = self.store.select_pending('clients', 2)
        self.assertEqual([r.local_id for r in first], ['L0', 'L1'])
        rest = self.store.select_pending('clients', 10, exclude=['L0', 'L1'])
        self.assertEqual([r.local_id for r in rest], ['L2', 'L3'])

    def test_acknowledge_unchanged_row_becomes_clean(self):
        row = self.clean_row()
        self.assertEqual(row.sync_status, SyncStatus.CLEAN)
        self.assertEqual(row.server_id, 'S1')
        self.assertEqual(row.server_last_modified, T0 + 20)
        self.assertIsNone(row.prior_status)

    def test_edit_while_in_flight_stays_pending(self):
        self.store.put('clients', {'name': 'Maria'}, local_id='L1')
        sent = self.store.mark_in_flight('clients', ['L1'])[0]
        self.clock.now = T0 + 5
        row = self.store.put('clients', {'name': 'Maria Silva'}, local_id='L1')
        self.assertEqual(row.sync_status, SyncStatus.IN_FLIGHT)

        result = self.store.acknowledge('clients', 'L1', 'S1', T0 + 20,
                                        sent.inflight_updated_at, SyncOperation.UPSERT)
        self.assertEqual(result, 'pending')
        row = self.store.get('clients', 'L1')
        self.assertEqual(row.sync_status, SyncStatus.PENDING_UPSERT)
        self.assertEqual(row.server_id, 'S1')
        self.assertEqual(row.server_last_modified, T0 + 20)
        self.assertEqual(row.payload, {'name': 'Maria Silva'})

    def test_delete_while_in_flight_becomes_pending_delete(self):
        self.store.put('clients', {'name': 'Maria'}, local_id='L1')
        sent = self.store.mark_in_flight('clients', ['L1'])[0]
        self.assertFalse(self.store.delete('clients', 'L1'))

        self.store.acknowledge('clients', 'L1', 'S1', T0 + 20,
                               sent.inflight_updated_at, SyncOperation.UPSERT)
        row = self.store.get('clients', 'L1')
        self.assertEqual(row.sync_status, SyncStatus.PENDING_DELETE)
        self.assertEqual(row.server_id, 'S1')

    def test_acknowledged_delete_removes_row(self):
        self.clean_row()
        self.store.delete('clients', 'L1')
        sent = self.store.mark_in_flight('clients', ['L1'])[0]
        result = self.store.acknowledge('clients', 'L1', 'S1', T0 + 30,
                                        sent.inflight_updated_at, SyncOperation.DELETE)
        self.assertEqual(result, 'removed')
        self.assertIsNone(self.store.get('clients', 'L1'))

    def test_revert_restores_prior_status(self):
        self.clean_row()
        self.store.delete('clients', 'L1')
        self.store.mark_in_flight('clients', ['L1'])
        self.assertEqual(self.store.revert_in_flight('clients', ['L1']), 1)
        row = self.store.get('clients', 'L1')
        self.assertEqual(row.sync_status, SyncStatus.PENDING_DELETE)
        self.assertIsNone(row.inflight_updated_at)

    def test_recover_in_flight_after_restart(self):
        self.store.put('clients', {'name': 'Maria'}, local_id='L1')
        self.store.mark_in_flight('clients', ['L1'])

        restarted = LocalRecordStore(self.db.path, DEVICE_A, clock=self.clock)
        self.assertEqual(restarted.recover_in_flight(), 1)
        self.assertEqual(restarted.get('clients', 'L1').sync_status, SyncStatus.PENDING_UPSERT)

    def test_repeated_rejections_quarantine_row(self):
        self.store.put('clients', {'name': 'M'}, local_id='L1')
        for attempt in range(3):
            self.store.mark_in_flight('clients', ['L1'])
            quarantined = self.store.record_rejection('clients', 'L1', 'VALIDATION_ERROR', 3)
            self.assertEqual(quarantined, attempt == 2)

        row = self.store.get('clients', 'L1')
        self.assertTrue(row.quarantined)
        self.assertEqual(row.sync_status, SyncStatus.PENDING_UPSERT)
        self.assertEqual(self.store.select_pending('clients', 10), [])
        self.assertEqual(len(self.store.list_quarantined()), 1)

        self.assertTrue(self.store.release_quarantine('clients', 'L1'))
        self.assertEqual(len(self.store.select_pending('clients', 10)), 1)

    def test_edit_clears_quarantine(self):
        self.store.put('clients', {'name': 'M'}, local_id='L1')
        self.store.record_rejection('clients', 'L1', 'VALIDATION_ERROR', 1)
        row = self.store.put('clients', {'name': 'Maria'}, local_id='L1')
        self.assertFalse(row.quarantined)
        self.assertEqual(row.failure_count, 0)


class TestApplyServerRow(LocalStoreTestCase):

    def server_row(self, server_id='S1', updated_at=T0 + 50, payload=None,
                   deleted=False, device_id=DEVICE_B, local_id=None):
        return ServerRow(
            server_id=server_id,
            updated_at=updated_at,
            payload=payload if payload is not None else {'name': 'Maria Souza'},
            deleted_at=updated_at if deleted else None,
            device_id=device_id,
            local_id=local_id,
        )

    def test_unknown_row_is_inserted_clean(self):
        result = self.store.apply_server_row('clients', self.server_row())
        self.assertEqual(result.action, ApplyAction.INSERTED)
        row = self.store.get_by_server_id('clients', 'S1')
        self.assertEqual(row.sync_status, SyncStatus.CLEAN)
        self.assertEqual(row.server_last_modified, T0 + 50)

    def test_unknown_tombstone_is_ignored(self):
        result = self.store.apply_server_row('clients', self.server_row(deleted=True))
        self.assertEqual(result.action, ApplyAction.IGNORED)
        self.assertIsNone(self.store.get_by_server_id('clients', 'S1'))

    def test_older_version_is_ignored(self):
        self.clean_row(server_updated_at=T0 + 50)
        result = self.store.apply_server_row('clients', self.server_row(updated_at=T0 + 50))
        self.assertEqual(result.action, ApplyAction.IGNORED)
        self.assertEqual(self.store.get('clients', 'L1').payload, {'name': 'Maria'})

    def test_clean_row_is_overwritten(self):
        self.clean_row()
        result = self.store.apply_server_row('clients', self.server_row())
        self.assertEqual(result.action, ApplyAction.UPDATED)
        row = self.store.get('clients', 'L1')
        self.assertEqual(row.payload, {'name': 'Maria Souza'})
        self.assertEqual(row.server_last_modified, T0 + 50)
        self.assertEqual(row.updated_at, T0 + 50)

    def test_clean_row_removed_by_tombstone(self):
        self.clean_row()
        result = self.store.apply_server_row('clients', self.server_row(deleted=True))
        self.assertEqual(result.action, ApplyAction.REMOVED)
        self.assertIsNone(self.store.get('clients', 'L1'))

    def test_pending_row_conflict_is_journaled(self):
        self.clean_row()
        self.store.put('clients', {'name': 'Maria Silva'}, local_id='L1')
        result = self.store.apply_server_row('clients', self.server_row())
        self.assertEqual(result.action, ApplyAction.RESOLVED)
        self.assertEqual(result.decision.resolution, Resolution.TAKE_SERVER)

        row = self.store.get('clients', 'L1')
        self.assertEqual(row.sync_status, SyncStatus.CLEAN)
        self.assertEqual(row.payload, {'name': 'Maria Souza'})

        conflicts = self.store.get_conflicts('clients')
        self.assertEqual(len(conflicts), 1)
        self.assertEqual(conflicts[0]['local_data'], {'name': 'Maria Silva'})
        self.assertEqual(conflicts[0]['remote_data']['payload'], {'name': 'Maria Souza'})

    def test_last_write_wins_keeps_newer_local_edit(self):
        store = LocalRecordStore(self.db.path, DEVICE_A,
                                 resolver=ConflictResolver(LAST_WRITE_WINS), clock=self.clock)
        self.store = store
        self.clean_row()
        self.clock.now = T0 + 90
        store.put('clients', {'name': 'Maria Silva'}, local_id='L1')

        result = store.apply_server_row('clients', self.server_row(updated_at=T0 + 50))
        self.assertEqual(result.decision.resolution, Resolution.KEEP_LOCAL)
        row = store.get('clients', 'L1')
        self.assertEqual(row.sync_status, SyncStatus.PENDING_UPSERT)
        self.assertEqual(row.server_last_modified, T0 + 50)
        self.assertEqual(row.payload, {'name': 'Maria Silva'})

    def test_client_wins_keeps_older_local_edit(self):
        store = LocalRecordStore(self.db.path, DEVICE_A,
                                 resolver=ConflictResolver(CLIENT_WINS), clock=self.clock)
        self.store = store
        self.clean_row()
        self.clock.now = T0 + 30
        store.put('clients', {'name': 'Maria Silva'}, local_id='L1')

        result = store.apply_server_row('clients', self.server_row(updated_at=T0 + 50))
        self.assertEqual(result.decision.resolution, Resolution.KEEP_LOCAL)
        row = store.get('clients', 'L1')
        self.assertEqual(row.sync_status, SyncStatus.PENDING_UPSERT)
        self.assertEqual(row.server_last_modified, T0 + 50)
        self.assertEqual(row.payload, {'name': 'Maria Silva'})
        self.assertEqual(store.get_conflicts('clients')[0]['strategy'], CLIENT_WINS)

    def test_own_unacknowledged_insert_is_adopted(self):
        self.store.put('clients', {'name': 'Maria'}, local_id='L1')
        self.store.mark_in_flight('clients', ['L1'])
        self.store.revert_in_flight('clients', ['L1'])

        result = self.store.apply_server_row('clients', self.server_row(
            payload={'name': 'Maria'}, device_id=DEVICE_A, local_id='L1'
        ))
        self.assertEqual(result.action, ApplyAction.REBASED)
        row = self.store.get('clients', 'L1')
        self.assertEqual(row.server_id, 'S1')
        self.assertEqual(row.sync_status, SyncStatus.PENDING_UPSERT)
        self.assertEqual(len(self.store.list_rows('clients')), 1)


if __name__ == '__main__':
    unittest.main()
