import unittest

from PyQt6.QtCore import QCoreApplication

from qt_scheduler import QtTickScheduler


class TestQtTickScheduler(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = QCoreApplication.instance() or QCoreApplication([])

    def test_start_and_stop(self):
        scheduler = QtTickScheduler(interval_ms=16)
        scheduler.start(lambda: None)
        self.assertTrue(scheduler.running)
        self.assertTrue(scheduler.timer.isActive())
        self.assertEqual(scheduler.timer.interval(), 16)

        scheduler.stop()
        self.assertFalse(scheduler.running)
        self.assertIsNone(scheduler.timer)
        scheduler.stop()

    def test_timeout_invokes_callback(self):
        calls = []
        scheduler = QtTickScheduler(interval_ms=16)
        scheduler.start(lambda: calls.append(1))
        scheduler._on_timeout()
        scheduler.stop()
        scheduler._on_timeout()
        self.assertEqual(calls, [1])

    def test_callback_error_is_contained(self):
        def boom():
            raise RuntimeError("boom")

        scheduler = QtTickScheduler(interval_ms=16)
        scheduler.start(boom)
        scheduler._on_timeout()
        self.assertTrue(scheduler.running)
        scheduler.stop()


if __name__ == "__main__":
    unittest.main()
