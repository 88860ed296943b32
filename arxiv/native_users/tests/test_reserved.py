"""Tests for :mod:`arxiv.native_users.reserved`."""

from unittest import TestCase, mock

from .. import passwords, reserved
from ..domain import ReservedUserInfo
from ..exceptions import MalformedRecord


class TestReservedUsers(TestCase):
    """The set of reserved usernames."""

    def test_from_config(self):
        """Reserved names are read from configuration."""
        users = reserved.ReservedUsers.from_config({
            'NATIVE_USERS_RESERVED': 'builtin1,builtin2'
        })
        self.assertTrue(users.is_reserved('builtin1'))
        self.assertIn('builtin2', users)
        self.assertFalse(users.is_reserved('alice'))
        self.assertEqual(list(users), ['builtin1', 'builtin2'])

    def test_defaults(self):
        """Without configuration, the default names are reserved."""
        users = reserved.ReservedUsers.from_config({})
        self.assertEqual(len(users), 3)
        self.assertIn('admin', users)

    def test_realm_disabled(self):
        """If the reserved realm is disabled, no name is reserved."""
        users = reserved.ReservedUsers.from_config({
            'NATIVE_USERS_RESERVED': 'builtin1',
            'RESERVED_REALM_ENABLED': 'false'
        })
        self.assertFalse(users.is_reserved('builtin1'))
        self.assertEqual(len(users), 0)

    def test_default_password(self):
        """The default hash matches the default password."""
        self.assertTrue(passwords.verify(reserved.DEFAULT_PASSWORD,
                                         reserved.DEFAULT_PASSWORD_HASH))
        self.assertTrue(reserved.DEFAULT_USER_INFO.enabled)

    def test_default_hash_is_fixed(self):
        """Every process uses the same placeholder hash."""
        self.assertIsInstance(reserved.DEFAULT_PASSWORD_HASH, str)
        self.assertTrue(reserved.DEFAULT_PASSWORD_HASH.startswith('$2b$10$'))
        self.assertFalse(passwords.verify('changemf',
                                          reserved.DEFAULT_PASSWORD_HASH))


class TestLookup(TestCase):
    """Resolve the effective credentials of reserved users."""

    def setUp(self):
        """Reserve two names."""
        self.users = reserved.ReservedUsers(['builtin1', 'builtin2'])
        self.store = mock.MagicMock()

    def test_not_reserved(self):
        """Only reserved users can be looked up."""
        with self.assertRaises(KeyError):
            self.users.lookup(self.store, 'alice')
        self.assertEqual(self.store.get_reserved_user_info.call_count, 0)

    def test_stored(self):
        """A stored override is used."""
        info = ReservedUserInfo('H', False)
        self.store.get_reserved_user_info.return_value = info
        self.assertEqual(self.users.lookup(self.store, 'builtin1'), info)

    def test_not_stored(self):
        """Without an override, the default is used."""
        self.store.get_reserved_user_info.return_value = None
        self.assertEqual(self.users.lookup(self.store, 'builtin1'),
                         reserved.DEFAULT_USER_INFO)

    def test_malformed(self):
        """A corrupt override is an error, not a default."""
        self.store.get_reserved_user_info.side_effect = MalformedRecord('bad')
        with self.assertRaises(MalformedRecord):
            self.users.lookup(self.store, 'builtin1')

    def test_lookup_all(self):
        """Every reserved user gets either its override or the default."""
        info = ReservedUserInfo('H', False)
        self.store.get_all_reserved_user_info.return_value = {'builtin2': info}
        self.assertEqual(self.users.lookup_all(self.store), {
            'builtin1': reserved.DEFAULT_USER_INFO,
            'builtin2': info
        })
