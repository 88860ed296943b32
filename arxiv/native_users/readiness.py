"""Decide, from cluster signals, whether the native user store may start."""

import logging

from .domain import ClusterState, State
from .lifecycle import IndexPresence

logger = logging.getLogger(__name__)


def can_start(state: State, cluster: ClusterState, index_name: str,
              presence: IndexPresence) -> bool:
    """
    Determine whether the store can move out of ``INITIALIZED``.

    Parameters
    ----------
    state : :class:`.State`
        Current state of the store.
    cluster : :class:`.ClusterState`
    index_name : str
        Name of the index that holds user documents.
    presence : :class:`.IndexPresence`
        Set if the index exists and is ready.

    Returns
    -------
    bool

    """
    if state is not State.INITIALIZED:
        return False

    # Until the cluster has recovered from disk, a missing index may just
    # not have been restored yet.
    if not cluster.recovered:
        logger.debug('native users store waiting until gateway has recovered'
                     ' from disk')
        return False

    if not cluster.template_up_to_date:
        logger.debug('native users store waiting for template of index [%s]',
                     index_name)
        return False

    routing = cluster.index(index_name)
    if routing is None:
        logger.debug('security index [%s] does not exist, so service can'
                     ' start', index_name)
        return True

    if routing.all_primaries_active:
        logger.debug('security index [%s] all primary shards started, so'
                     ' service can start', index_name)
        presence.set(True)
        return True
    return False


def observe(cluster: ClusterState, index_name: str,
            presence: IndexPresence) -> None:
    """Update ``presence`` from a new :class:`.ClusterState`."""
    routing = cluster.index(index_name)
    if routing is not None and routing.all_primaries_active:
        logger.debug('security index [%s] all primary shards started',
                     index_name)
        presence.set(True)
    else:
        presence.set(False)
