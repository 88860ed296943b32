"""
Native user store for arXiv authentication services.

This package keeps user accounts (usernames, password hashes, roles, and
profile details) in a document store, and exposes create, read, update,
delete, password-change, enable/disable, and bulk-listing operations on
them. It also knows about the built-in (reserved) accounts, whose
credentials may be overridden in the store but otherwise fall back to a
default.

Every change to a user is followed by a message on a Redis channel telling
authentication layers to drop their cached copy of that user.

Quick start
-----------
1. Install this package into your virtual environment.
2. Install the store onto your application with
   :func:`arxiv.native_users.store.init_app`.
3. Start the store once the document store is ready.

.. code-block:: python

   # yourapp/factory.py
   from arxiv.native_users import store


   def create_web_app() -> Flask:
       app = Flask('foo')
       store.init_app(app)    # <- Install the native user store.
       with app.app_context():
           store.current_store().start_if_ready()
       return app


Inside a request (or any application context), the module-level functions of
:mod:`arxiv.native_users.store` block until the operation is complete:

.. code-block:: python

   from arxiv.native_users import passwords, store

   store.put_user('alice', ['admin'], password_hash=passwords.hash_password('s3cret'))
   user = store.verify_password('alice', 's3cret')

The methods of :class:`.NativeUsersStore` itself return a
:class:`concurrent.futures.Future` instead.

Configuration
-------------
See :mod:`arxiv.native_users.config` for the parameters and their defaults.
"""

from .domain import ClusterState, IndexRouting, ReservedUserInfo, State, \
    User, UserAndPassword
from .exceptions import CacheClearFailed, IllegalState, MalformedRecord, \
    NativeUsersError, NotStarted, StoreTimeout, ValidationFailed
from .store import NativeUsersStore, current_store, init_app
