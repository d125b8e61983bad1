"""GTFS-Realtime decoding into board entities."""

import logging
from typing import Any, List, Optional

from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from .models import (
    AlertEntity,
    RealtimeEntity,
    ScheduleRelationship,
    StopTimeEvent,
    StopTimeUpdate,
    TripDescriptor,
    TripUpdateEntity,
    VehiclePositionEntity,
)

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """The real-time feed could not be obtained."""


class FeedDecodeError(FeedError):
    """The feed bytes could not be decoded."""


def _feed_message_class(bindings: Any):
    """Pick FeedMessage from whichever layout the bindings module exposes."""
    message_class = getattr(bindings, "FeedMessage", None)
    if message_class is not None:
        return message_class

    namespace = getattr(bindings, "transit_realtime", None)
    message_class = getattr(namespace, "FeedMessage", None)
    if message_class is not None:
        return message_class

    raise FeedDecodeError("GTFS-Realtime bindings expose no FeedMessage type")


def decode(raw_bytes: bytes, bindings: Any = gtfs_realtime_pb2) -> List[RealtimeEntity]:
    """
    Decode a GTFS-Realtime FeedMessage.

    Args:
        raw_bytes: Serialized protobuf payload.
        bindings: Module providing FeedMessage (defaults to gtfs_realtime_pb2).

    Returns:
        The feed entities in feed order.

    Raises:
        FeedDecodeError: If the payload is not a valid FeedMessage.
    """
    message_class = _feed_message_class(bindings)
    feed = message_class()
    try:
        feed.ParseFromString(raw_bytes)
    except DecodeError as e:
        raise FeedDecodeError(f"Malformed GTFS-Realtime payload: {e}") from e

    entities: List[RealtimeEntity] = []
    for entity in feed.entity:
        converted = _convert_entity(entity)
        if converted is not None:
            entities.append(converted)

    logger.debug(f"Decoded {len(entities)} of {len(feed.entity)} feed entities")
    return entities


def _convert_entity(entity) -> Optional[RealtimeEntity]:
    if entity.HasField("trip_update"):
        trip_update = entity.trip_update
        trip = trip_update.trip
        return TripUpdateEntity(
            entity_id=entity.id,
            trip=TripDescriptor(trip_id=trip.trip_id, route_id=trip.route_id),
            stop_time_updates=tuple(_convert_stop_time_update(stu) for stu in trip_update.stop_time_update),
        )

    if entity.HasField("vehicle"):
        vehicle = entity.vehicle
        return VehiclePositionEntity(
            entity_id=entity.id,
            trip_id=vehicle.trip.trip_id or None,
            stop_id=vehicle.stop_id or None,
        )

    if entity.HasField("alert"):
        alert = entity.alert
        header = ""
        if alert.header_text.translation:
            header = alert.header_text.translation[0].text
        route_ids = tuple(ie.route_id for ie in alert.informed_entity if ie.route_id)
        return AlertEntity(entity_id=entity.id, header=header, route_ids=route_ids)

    return None


def _convert_event(stu, name: str) -> Optional[StopTimeEvent]:
    if not stu.HasField(name):
        return None
    event = getattr(stu, name)
    return StopTimeEvent(
        time=event.time if event.HasField("time") else None,
        delay=event.delay if event.HasField("delay") else None,
    )


def _convert_stop_time_update(stu) -> StopTimeUpdate:
    try:
        relationship = ScheduleRelationship(stu.schedule_relationship)
    except ValueError:
        relationship = ScheduleRelationship.SCHEDULED

    return StopTimeUpdate(
        stop_id=stu.stop_id,
        arrival=_convert_event(stu, "arrival"),
        departure=_convert_event(stu, "departure"),
        schedule_relationship=relationship,
    )
