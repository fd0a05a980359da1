"""Client gateway tests: event dispatch against fake channel and real store/player"""
import sys
import os
import asyncio
import tempfile
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from fakes import FakeChannel, RecordingSleep
from lib.servo.command_encoder import Step
from lib.servo.sequence_store import SequenceStore
from lib.servo.sequence_player import SequencePlayer


class Replies:
    def __init__(self):
        self.events = []

    async def __call__(self, event, data=None):
        self.events.append((event, data))


class TestClientGateway(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        from sequence_api import ClientGateway
        cls.ClientGateway = ClientGateway

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.channel = FakeChannel()
        self.store = SequenceStore(
            os.path.join(self.tmp.name, 'sequences.json'),
            os.path.join(self.tmp.name, 'sequences.txt'),
        )
        self.sleep = RecordingSleep()
        self.player = SequencePlayer(self.channel, self.store, sleep=self.sleep)
        self.gateway = self.ClientGateway(
            self.channel, self.store, self.player,
            import_path=os.path.join(self.tmp.name, 'imported_moves.txt'),
        )
        self.replies = Replies()

    def tearDown(self):
        self.tmp.cleanup()

    def dispatch(self, event, data=None, wait_player=False):
        async def run():
            await self.gateway.dispatch(event, data, self.replies)
            if wait_player:
                await self.player.wait()
        asyncio.run(run())

    def test_move_writes_directly(self):
        self.dispatch("move", {"servo": 3, "angle": 120, "speed": 4})
        self.assertEqual(self.channel.sent, ["3,120,4\n"])
        self.assertTrue(self.store.is_empty())

    def test_malformed_move_is_not_written(self):
        self.dispatch("move", {"servo": 3, "angle": "left", "speed": 4})
        self.assertEqual(self.channel.sent, [])
        self.assertEqual(self.replies.events[0][0], "notice")

    def test_move_failure_broadcasts_device_error(self):
        self.channel.fail_after = 0
        broadcasts = []

        async def capture(event, data=None):
            broadcasts.append((event, data))

        self.gateway.broadcast = capture
        self.dispatch("move", {"servo": 1, "angle": 2, "speed": 3})
        self.assertEqual(broadcasts[0][0], "deviceError")

    def test_save_then_get_sequences(self):
        self.dispatch("saveSequence", [{"servo": 1, "angle": 30, "speed": 5}])
        self.dispatch("getSequences")
        self.assertEqual(self.replies.events, [
            ("sequencesList", [[{"servo": 1, "angle": 30, "speed": 5}]]),
        ])

    def test_save_rejects_non_list(self):
        self.dispatch("saveSequence", {"servo": 1})
        self.assertTrue(self.store.is_empty())
        self.assertEqual(self.replies.events[0][0], "notice")

    def test_play_sequence_runs_stored_playback(self):
        self.store.record_sequence([Step(1, 30, 5)])
        self.dispatch("playSequence", wait_player=True)
        self.assertEqual(len(self.channel.sent), 7)
        self.assertEqual(self.channel.sent[-1], "1,30,5\n")

    def test_play_sequence_on_empty_store_does_nothing(self):
        self.dispatch("playSequence", wait_player=True)
        self.assertEqual(self.channel.sent, [])
        self.assertEqual(self.replies.events, [])

    def test_download_txt_replies_with_path(self):
        self.store.record_sequence([Step(1, 30, 5)])
        self.dispatch("downloadTxt")
        event, path = self.replies.events[0]
        self.assertEqual(event, "txtReady")
        with open(path, encoding='utf-8') as f:
            self.assertEqual(f.read(), "1,30,5")

    def test_import_txt_stages_file_and_plays(self):
        self.dispatch("importTxt", "1,45,3\n2,90,7\n\n3,bad,5", wait_player=True)
        with open(self.gateway.import_path, encoding='utf-8') as f:
            self.assertEqual(f.read(), "1,45,3\n2,90,7\n\n3,bad,5")
        self.assertEqual(self.channel.sent, ["1,45,3\n", "2,90,7\n"])
        self.assertEqual(self.replies.events, [])

    def test_play_rejected_while_import_running(self):
        async def run():
            await self.gateway.dispatch("importTxt", "1,45,3", self.replies)
            await self.gateway.dispatch("playSequence", None, self.replies)
            await self.player.wait()
        self.store.record_sequence([Step(1, 30, 5)])
        asyncio.run(run())
        self.assertEqual(self.channel.sent, ["1,45,3\n"])
        self.assertEqual(self.replies.events[0][0], "notice")

    def test_import_rejected_while_busy_keeps_staged_file(self):
        import_path = os.path.join(self.tmp.name, 'imported_moves.txt')

        async def run():
            await self.gateway.dispatch("importTxt", "1,45,3", self.replies)
            await self.gateway.dispatch("importTxt", "6,10,1", self.replies)
            await self.player.wait()
        asyncio.run(run())

        with open(import_path, encoding='utf-8') as f:
            self.assertEqual(f.read(), "1,45,3")
        self.assertEqual(self.channel.sent, ["1,45,3\n"])
        self.assertEqual(self.replies.events, [
            ("notice", {"level": "warning", "message": "Playback already in progress"}),
        ])

    def test_unknown_event_gets_notice(self):
        self.dispatch("selfDestruct")
        self.assertEqual(self.replies.events[0][0], "notice")


if __name__ == '__main__':
    unittest.main()
