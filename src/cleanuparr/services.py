# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Select the download service implementation for a configured download client.
"""

import logging

from . import qbittorrent
from . import deluge
from . import transmission
from . import utorrent
from . import rtorrent
from .utils import CleanuparrValidationError

logger = logging.getLogger(__name__)

DOWNLOAD_SERVICE_TYPES = {
    service_type.TYPE: service_type
    for service_type in (
        qbittorrent.QBitService,
        deluge.DelugeService,
        transmission.TransmissionService,
        utorrent.UTorrentService,
        rtorrent.RTorrentService,
    )
}


def create_download_service(client_config, config, **collaborators):
    """
    Return the download service for the client type, fail on unknown types.
    """
    service_type = DOWNLOAD_SERVICE_TYPES.get(client_config.type)
    if service_type is None:
        raise CleanuparrValidationError(
            f"Download client type {client_config.type!r} is not supported: "
            f"{client_config.name}",
        )
    logger.debug(
        "Creating %s download service: %s",
        client_config.type,
        client_config.name,
    )
    return service_type(client_config, config, **collaborators)
