import datetime
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Union

logger = logging.getLogger(__name__)

Snowflake = Union[int, str]


def empty_document() -> Dict[str, Any]:
    return {
        'whitelist': {'users': [], 'roles': []},
        'violations': {'byGuild': {}},
    }


class ViolationStore:

    """Stores violations and the whitelist in a single JSON document.

    The whole document is kept in memory and rewritten on every change.
    Discord IDs are stored as strings so the file stays readable by other
    tools that cannot represent 64-bit integers.

    Attributes:
        data_file: Path object pointing to the JSON document.
        data: The in-memory document.
    """

    def __init__(self, data_file: str = 'data.json') -> None:
        """Loads the document, creating it when missing.

        Args:
            data_file: Path of the JSON document.
        """
        self.data_file = Path(data_file)
        self.data = self._load()

    def add_violation(self, guild_id: Snowflake, user_id: Snowflake, type: str, reason: str,
                      moderator_id: Snowflake, channel_id: Snowflake = None) -> Dict[str, Any]:
        """Appends a violation to a user's record and persists it.

        Args:
            guild_id: Guild the violation happened in.
            user_id: User the violation is recorded against.
            type: Violation category (e.g. 'HATE_SPEECH', 'MANUAL_WARN').
            reason: Human readable reason.
            moderator_id: User (or bot) that recorded the violation.
            channel_id: Channel, or audit target, the violation relates to.

        Returns:
            The stored violation record.
        """
        by_guild = self.data['violations']['byGuild']
        record = by_guild.setdefault(str(guild_id), {}).setdefault(str(user_id), [])

        violation = {
            'id': str(uuid.uuid4()),
            'type': type,
            'reason': reason,
            'moderatorId': str(moderator_id),
            'channelId': str(channel_id) if channel_id is not None else None,
            'timestamp': datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }
        record.append(violation)
        self._save()

        logger.info('Recorded %s violation %s for user %s in guild %s',
                    type, violation['id'], user_id, guild_id)
        return violation

    def remove_violation(self, guild_id: Snowflake, user_id: Snowflake, violation_id: str) -> bool:
        """Removes a violation by its ID.

        Returns:
            True if the violation existed and was removed.
        """
        record = self.data['violations']['byGuild'].get(str(guild_id), {}).get(str(user_id))
        if not record:
            return False

        for index, violation in enumerate(record):
            if violation.get('id') == violation_id:
                del record[index]
                self._save()
                logger.info('Removed violation %s for user %s in guild %s',
                            violation_id, user_id, guild_id)
                return True

        return False

    def get_violations(self, guild_id: Snowflake, user_id: Snowflake) -> List[Dict[str, Any]]:
        """Returns a user's violations in the order they were recorded."""
        return list(self.data['violations']['byGuild'].get(str(guild_id), {}).get(str(user_id), []))

    @property
    def whitelisted_users(self) -> List[str]:
        return list(self.data['whitelist']['users'])

    @property
    def whitelisted_roles(self) -> List[str]:
        return list(self.data['whitelist']['roles'])

    def add_whitelisted_user(self, user_id: Snowflake) -> bool:
        return self._whitelist_add('users', user_id)

    def remove_whitelisted_user(self, user_id: Snowflake) -> bool:
        return self._whitelist_remove('users', user_id)

    def add_whitelisted_role(self, role_id: Snowflake) -> bool:
        return self._whitelist_add('roles', role_id)

    def remove_whitelisted_role(self, role_id: Snowflake) -> bool:
        return self._whitelist_remove('roles', role_id)

    def _whitelist_add(self, kind: str, snowflake: Snowflake) -> bool:
        entries = self.data['whitelist'][kind]
        if str(snowflake) in entries:
            return False
        entries.append(str(snowflake))
        self._save()
        return True

    def _whitelist_remove(self, kind: str, snowflake: Snowflake) -> bool:
        entries = self.data['whitelist'][kind]
        if str(snowflake) not in entries:
            return False
        entries.remove(str(snowflake))
        self._save()
        return True

    def _load(self) -> Dict[str, Any]:
        """Reads the document from disk.

        A missing file is created with an empty document. A file that cannot
        be decoded, or whose layout is not the expected mapping, is moved aside
        to ``<name>.corrupt`` before starting over, so existing records are
        never silently overwritten.

        Returns:
            The loaded document with all top-level keys present.
        """
        if not self.data_file.exists():
            data = empty_document()
            self._write(data)
            return data

        try:
            with open(self.data_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.exception('Could not parse %s', self.data_file)
            return self._reset_corrupt()

        if not self._is_valid(data):
            logger.error('Unexpected document layout in %s', self.data_file)
            return self._reset_corrupt()

        whitelist = data.setdefault('whitelist', {})
        whitelist.setdefault('users', [])
        whitelist.setdefault('roles', [])
        data.setdefault('violations', {}).setdefault('byGuild', {})
        return data

    @staticmethod
    def _is_valid(data: Any) -> bool:
        if not isinstance(data, dict):
            return False
        for key in ('whitelist', 'violations'):
            if key in data and not isinstance(data[key], dict):
                return False
        whitelist = data.get('whitelist', {})
        if any(not isinstance(whitelist.get(kind, []), list) for kind in ('users', 'roles')):
            return False
        return isinstance(data.get('violations', {}).get('byGuild', {}), dict)

    def _reset_corrupt(self) -> Dict[str, Any]:
        """Moves an unusable document aside and starts a new one.

        Returns:
            The new empty document.
        """
        backup = self.data_file.with_name(self.data_file.name + '.corrupt')
        logger.error('Moving %s to %s', self.data_file, backup)
        os.replace(self.data_file, backup)
        data = empty_document()
        self._write(data)
        return data

    def _save(self) -> None:
        self._write(self.data)

    def _write(self, data: Dict[str, Any]) -> None:
        """Writes the document through a temporary file.

        Raises:
            OSError: If the file cannot be written.
        """
        self.data_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.data_file.with_name(self.data_file.name + '.tmp')
        with open(tmp_file, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_file, self.data_file)
