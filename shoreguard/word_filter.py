from typing import Iterable, List, Optional


class WordFilter:
    def __init__(self, words: Iterable[str]):
        """
        Initialize the banned word filter.

        Args:
            words: Banned words or phrases; matching is case-insensitive

        Usage:
            word_filter = WordFilter(config.get('banned_words'))
        """
        self.words: List[str] = [w.strip().lower() for w in words if w and w.strip()]

    def find(self, text: Optional[str]) -> Optional[str]:
        """
        Find the first banned word contained in the text.

        Words are checked in configuration order and match anywhere in the
        text, including inside longer words.

        Args:
            text: Message content to scan

        Returns:
            The matching banned word, or None if the text is clean

        Usage:
            word = word_filter.find(message.content)
        """
        if not text:
            return None

        content = text.lower()
        for word in self.words:
            if word in content:
                return word
        return None

    def __len__(self) -> int:
        return len(self.words)
