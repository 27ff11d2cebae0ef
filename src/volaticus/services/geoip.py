import ipaddress
import os
from dataclasses import dataclass
from typing import Optional

import geoip2.database
import geoip2.errors
from maxminddb import InvalidDatabaseError

from volaticus.core.config import logger

UNKNOWN_COUNTRY = "XX"


@dataclass(frozen=True)
class Location:
    country_code: str = UNKNOWN_COUNTRY
    city: str = ""
    region: str = ""


UNKNOWN_LOCATION = Location()


class GeoIPResolver:
    """
    Country, city and region lookup backed by a MaxMind City database.

    Created once at startup and shared read-only; the underlying reader is
    memory mapped and safe for concurrent lookups. Without a database every
    lookup answers the unknown location.
    """

    def __init__(self, db_path: Optional[str] = None, reader=None):
        self._reader = reader
        if self._reader is None and db_path:
            if not os.path.exists(db_path):
                logger.warning(f"GeoIP database not found at {db_path}, lookups disabled")
            else:
                try:
                    self._reader = geoip2.database.Reader(db_path)
                    logger.info(f"Loaded GeoIP database from {db_path}")
                except (OSError, InvalidDatabaseError) as e:
                    logger.warning(f"Could not load GeoIP database {db_path}: {e}")

    @property
    def enabled(self) -> bool:
        return self._reader is not None

    def lookup(self, ip: str) -> Location:
        if self._reader is None or not ip:
            return UNKNOWN_LOCATION

        try:
            ipaddress.ip_address(ip)
        except ValueError:
            return UNKNOWN_LOCATION

        try:
            record = self._reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            return UNKNOWN_LOCATION
        except (ValueError, geoip2.errors.GeoIP2Error, InvalidDatabaseError) as e:
            logger.warning(f"GeoIP lookup failed for {ip}: {e}")
            return UNKNOWN_LOCATION

        region = ""
        if record.subdivisions:
            region = record.subdivisions.most_specific.names.get("en", "")

        return Location(
            country_code=record.country.iso_code or UNKNOWN_COUNTRY,
            city=record.city.names.get("en", ""),
            region=region,
        )

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None
