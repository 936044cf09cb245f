"""
Gesture → text accumulation.

Each emitted gesture is mapped to a text fragment (a custom mapping, or
the gesture name followed by a space) and appended to the running text.
Speech output and display are left to listeners of ``Events.TEXT_CHANGED``.
"""

import logging

from core.events import Events

logger = logging.getLogger(__name__)


class TextAccumulator:
    """Builds the detected text from emitted gestures."""

    def __init__(self, mapping: dict = None, event_bus=None):
        self._mapping = dict(mapping or {})
        self._text = ""
        self._bus = event_bus
        self._history = []

    def text_for(self, gesture_name: str) -> str:
        """Fragment appended for a gesture."""
        return self._mapping.get(gesture_name, f"{gesture_name} ")

    def append(self, gesture_name: str) -> str:
        """Append the fragment for ``gesture_name``; returns the fragment."""
        fragment = self.text_for(gesture_name)
        if fragment:
            self._text += fragment
            self._history.append(gesture_name)
            logger.info("Added to text: %r | Full text now: %r", fragment, self._text)
            self._publish()
        return fragment

    def on_gesture_emitted(self, name, **kwargs):
        """EventBus listener for ``Events.GESTURE_EMITTED``."""
        self.append(name)

    def set_mapping(self, gesture_name: str, text: str):
        self._mapping[gesture_name] = text

    def remove_mapping(self, gesture_name: str) -> bool:
        return self._mapping.pop(gesture_name, None) is not None

    @property
    def mapping(self) -> dict:
        return dict(self._mapping)

    def clear(self):
        self._text = ""
        self._history.clear()
        logger.info("Text cleared")
        self._publish()

    @property
    def text(self) -> str:
        return self._text

    @property
    def gestures(self) -> list:
        """Emitted gesture names in order since the last clear."""
        return list(self._history)

    def _publish(self):
        if self._bus is not None:
            self._bus.emit(Events.TEXT_CHANGED, text=self._text)
