"""Single-shot timers on the Qt event loop, used to pace batch captures."""

from PyQt6.QtCore import QObject, QTimer


class QtClock(QObject):
    """
    after(seconds, callback) -> token, cancel(token).

    Timers fire on the thread that owns this object, which must be running a
    Qt event loop (QApplication or QCoreApplication).
    """

    def __init__(self, parent=None):
        super().__init__(parent)
        self._timers = set()

    def after(self, seconds, callback):
        timer = QTimer(self)
        timer.setSingleShot(True)

        def on_timeout():
            self._release(timer)
            callback()

        timer.timeout.connect(on_timeout)
        self._timers.add(timer)
        timer.start(max(0, int(round(seconds * 1000))))
        return timer

    def cancel(self, token):
        if token in self._timers:
            token.stop()
            self._release(token)

    def cancel_all(self):
        for timer in list(self._timers):
            self.cancel(timer)

    @property
    def pending(self):
        return len(self._timers)

    def _release(self, timer):
        self._timers.discard(timer)
        timer.deleteLater()
