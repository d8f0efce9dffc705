from loguru import logger

import pyperclip


class ClipboardWriter:
    """Writes the final transcript to the system clipboard as plain text."""

    def __init__(self, copy=None):
        self._copy = copy or pyperclip.copy

    def write(self, text: str) -> bool:
        try:
            self._copy(text)
        except pyperclip.PyperclipException as e:
            logger.warning(f"Clipboard unavailable: {e}")
            return False
        except Exception as e:
            logger.warning(f"Clipboard write failed: {e}")
            return False
        logger.debug(f"Copied {len(text)} chars to clipboard")
        return True
