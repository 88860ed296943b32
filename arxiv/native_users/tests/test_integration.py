"""Integration tests for :mod:`arxiv.native_users.store` with a real database."""

import random
from unittest import TestCase, mock

from flask import Flask
from mimesis import Person
from mimesis.locales import Locale
from redis.exceptions import ConnectionError

from .. import futures, passwords, reserved, store
from ..domain import ReservedUserInfo, State
from ..exceptions import CacheClearFailed, ValidationFailed
from ..services import realm_cache
from ..services.documents import DocumentStore
from ..services.realm_cache import CacheUnavailable

ROUNDS = 4
LOCALES = [Locale.EN, Locale.DE, Locale.FR, Locale.ES, Locale.RU, Locale.JA]


def _hash(password):
    return passwords.hash_password(password, ROUNDS)


class IntegrationTestCase(TestCase):
    """Run a started store against an in-memory database."""

    settings = {'NATIVE_USERS_RESERVED': 'builtin1,builtin2',
                'NATIVE_USERS_SCROLL_SIZE': 7,
                'NATIVE_USERS_TIMEOUT': 5}

    def setUp(self):
        """Create the tables, and start the store."""
        self.documents = DocumentStore.from_uri('sqlite://', '.security',
                                                max_workers=1)
        self.documents.create_all()
        self.cache = mock.MagicMock()
        self.cache.clear.return_value = futures.completed(1)
        self.store = store.NativeUsersStore(self.documents, self.cache,
                                            dict(self.settings))
        self.assertTrue(self.store.start_if_ready())

    def tearDown(self):
        """Stop the store and drop everything."""
        self.store.stop()
        self.documents.drop_all()
        self.documents.close()

    def wait(self, future):
        """Block on a store operation."""
        return futures.wait(future, 5)


class TestRegularUser(IntegrationTestCase):
    """The life of a regular user."""

    def test_empty_store(self):
        """Without an index, nothing is there."""
        self.assertIsNone(self.wait(self.store.get_user('alice')))
        self.assertFalse(self.wait(self.store.delete_user('alice')))
        self.assertEqual(list(self.store.get_users()), [])
        with self.assertRaises(ValidationFailed):
            self.wait(self.store.put_user('alice', ['admin']))
        with self.assertRaises(ValidationFailed):
            self.wait(self.store.change_password('alice', _hash('x')))
        with self.assertRaises(ValidationFailed):
            self.wait(self.store.set_enabled('alice', False))

    def test_alice(self):
        """Create, read, update, disable and delete a user."""
        created = self.wait(self.store.put_user(
            'alice', ['admin'], full_name='Alice A.', email='alice@x.org',
            metadata={'team': 'ops'}, password_hash=_hash('s3cret')
        ))
        self.assertTrue(created)

        user = self.wait(self.store.get_user('alice'))
        self.assertEqual(user.roles, ('admin',))
        self.assertEqual(user.full_name, 'Alice A.')
        self.assertEqual(user.metadata, {'team': 'ops'})
        self.assertTrue(user.enabled)
        self.assertEqual(
            self.wait(self.store.verify_password('alice', 's3cret')), user
        )
        self.assertIsNone(
            self.wait(self.store.verify_password('alice', 'wrong'))
        )

        # Updating without a password keeps the password.
        self.assertFalse(self.wait(self.store.put_user('alice', ['viewer'])))
        user = self.wait(self.store.verify_password('alice', 's3cret'))
        self.assertEqual(user.roles, ('viewer',))

        self.wait(self.store.change_password('alice', _hash('n3w')))
        self.assertIsNone(
            self.wait(self.store.verify_password('alice', 's3cret'))
        )
        self.assertIsNotNone(
            self.wait(self.store.verify_password('alice', 'n3w'))
        )

        self.wait(self.store.set_enabled('alice', False))
        self.assertFalse(self.wait(self.store.get_user('alice')).enabled)

        self.assertTrue(self.wait(self.store.delete_user('alice')))
        self.assertFalse(self.wait(self.store.delete_user('alice')))
        self.assertIsNone(self.wait(self.store.get_user('alice')))

        cleared = [call[0][0] for call in self.cache.clear.call_args_list]
        self.assertEqual(cleared, ['alice'] * 6)

    def test_stopped(self):
        """A stopped store can be reset and started again."""
        self.wait(self.store.put_user('alice', [], password_hash=_hash('x')))
        self.assertTrue(self.store.stop())
        self.assertEqual(self.store.state, State.STOPPED)
        self.store.reset()
        self.assertTrue(self.store.start_if_ready())
        self.assertTrue(self.store.index_exists)
        self.assertIsNotNone(self.wait(self.store.get_user('alice')))


class TestReservedUsers(IntegrationTestCase):
    """Built-in users are kept in their own partition."""

    def test_builtin1(self):
        """Changing the password of a reserved user stores an override."""
        self.assertIsNone(self.store.get_reserved_user_info('builtin1'))
        self.assertEqual(
            self.store.reserved.lookup(self.store, 'builtin1'),
            reserved.DEFAULT_USER_INFO
        )

        password_hash = _hash('b1')
        self.wait(self.store.change_password('builtin1', password_hash))
        self.assertEqual(self.store.get_reserved_user_info('builtin1'),
                         ReservedUserInfo(password_hash, True))
        self.assertIsNone(self.wait(self.store.get_user('builtin1')))

        self.wait(self.store.set_enabled('builtin1', False))
        self.assertEqual(self.store.get_reserved_user_info('builtin1'),
                         ReservedUserInfo(password_hash, False))

    def test_disable_without_override(self):
        """Disabling a reserved user stores the default password."""
        self.wait(self.store.set_enabled('builtin2', False))
        self.assertEqual(self.store.get_all_reserved_user_info(), {
            'builtin2': ReservedUserInfo(reserved.DEFAULT_PASSWORD_HASH,
                                         False)
        })
        self.assertEqual(self.store.reserved.lookup_all(self.store), {
            'builtin1': reserved.DEFAULT_USER_INFO,
            'builtin2': ReservedUserInfo(reserved.DEFAULT_PASSWORD_HASH,
                                         False)
        })

        # Enabling again only flips the flag.
        self.wait(self.store.set_enabled('builtin2', True))
        self.assertEqual(self.store.get_reserved_user_info('builtin2'),
                         ReservedUserInfo(reserved.DEFAULT_PASSWORD_HASH,
                                          True))


class TestCacheClearFailure(IntegrationTestCase):
    """Changes are kept when the realm cache cannot be cleared."""

    def test_change_is_visible(self):
        """A failed invalidation does not undo the change."""
        self.wait(self.store.put_user('alice', ['admin'],
                                      password_hash=_hash('s3cret')))
        self.cache.clear.return_value = \
            futures.failed(CacheUnavailable('down'))

        with self.assertLogs(level='ERROR'):
            with self.assertRaises(CacheClearFailed) as caught:
                self.wait(self.store.put_user('alice', ['viewer'],
                                              email='alice@x.org'))
        self.assertFalse(caught.exception.result)

        self.cache.clear.return_value = futures.completed(1)
        user = self.wait(self.store.get_user('alice'))
        self.assertEqual(user.roles, ('viewer',))
        self.assertEqual(user.email, 'alice@x.org')


class TestScanWithDeletes(IntegrationTestCase):
    """Users deleted during a scan."""

    settings = dict(IntegrationTestCase.settings,
                    NATIVE_USERS_SCROLL_SIZE=2)

    def test_deleted_page(self):
        """Deleting a whole page mid-scan does not end the scan early."""
        for name in ['a', 'b', 'c', 'd', 'e']:
            self.wait(self.store.put_user(name, [],
                                          password_hash=_hash(name)))
        users = iter(self.store.get_users())
        seen = [next(users).username, next(users).username]
        self.wait(self.store.delete_user('c'))
        self.wait(self.store.delete_user('d'))
        seen += [user.username for user in users]
        self.assertEqual(seen, ['a', 'b', 'e'])


class TestBulk(IntegrationTestCase):
    """Scan many generated users."""

    def setUp(self):
        """Generate some fake users."""
        super(TestBulk, self).setUp()
        password_hash = _hash('password')
        self.users = {}
        for i in range(25):
            person = Person(random.choice(LOCALES))
            username = f'{person.username()}{i}'
            self.wait(self.store.put_user(
                username, ['viewer'], full_name=person.full_name(),
                email=person.email(), enabled=random.random() < 0.8,
                password_hash=password_hash
            ))
            self.users[username] = person

    def test_all_users(self):
        """Every user is found, over several pages."""
        users = self.store.get_users()
        found = [user.username for user in users]
        self.assertEqual(sorted(found), sorted(self.users))
        # The scan can be repeated.
        self.assertEqual(len(list(users)), 25)

    def test_some_users(self):
        """Only the named users are found."""
        wanted = random.sample(sorted(self.users), 10) + ['nobody']
        found = [user.username for user in self.store.get_users(wanted)]
        self.assertEqual(sorted(found), sorted(wanted[:10]))

    def test_stop_early(self):
        """Consumers may stop reading before the last page."""
        users = iter(self.store.get_users())
        first = next(users)
        self.assertIn(first.username, self.users)
        users.close()


class TestApplication(TestCase):
    """Use the store through a Flask application."""

    @mock.patch(f'{realm_cache.__name__}.redis')
    def test_blocking_functions(self, mock_redis):
        """The module-level functions block on the application's store."""
        mock_redis.exceptions.ConnectionError = ConnectionError
        mock_redis_connection = mock.MagicMock()
        mock_redis_connection.publish.return_value = 1
        mock_redis.StrictRedis.return_value = mock_redis_connection

        app = Flask('test')
        app.config['NATIVE_USERS_DATABASE_URI'] = 'sqlite://'
        app.config['NATIVE_USERS_RESERVED'] = 'builtin1'
        store.init_app(app)

        with app.app_context():
            native_users = store.current_store()
            self.assertIs(native_users, app.extensions['native_users'])
            native_users.documents.create_all()
            self.assertTrue(native_users.start_if_ready())

            self.assertTrue(store.put_user('alice', ['admin'],
                                           password_hash=_hash('s3cret')))
            self.assertEqual(store.get_user('alice').roles, ('admin',))
            self.assertEqual(store.verify_password('alice', 's3cret'),
                             store.get_user('alice'))
            store.set_enabled('alice', False)
            store.change_password('builtin1', _hash('b1'))
            self.assertEqual([user.username for user in store.get_users()],
                             ['alice'])
            self.assertTrue(store.delete_user('alice'))
            self.assertIsNone(store.get_user('alice'))

            native_users.stop()
            native_users.close()

        self.assertEqual(mock_redis_connection.publish.call_count, 4)
