"""Pin commands for the carryzone CLI."""

import json
import logging
from typing import TYPE_CHECKING

from carryzone.types import Location, Pin, PinMetadata, PinStatus, RestrictionTag, ms_to_datetime

if TYPE_CHECKING:
    from carryzone import CarryZone

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    PinStatus.ALLOWED: "🟢",
    PinStatus.UNCERTAIN: "🟡",
    PinStatus.NO_GUN: "🔴",
}


def pin_to_json(pin: Pin) -> dict:
    meta = pin.metadata
    return {
        "id": pin.id,
        "name": pin.name,
        "latitude": pin.location.latitude,
        "longitude": pin.location.longitude,
        "status": pin.status.value,
        "notes": meta.notes,
        "restriction_tag": meta.restriction_tag.value if meta.restriction_tag else None,
        "has_security_screening": meta.has_security_screening,
        "has_posted_signage": meta.has_posted_signage,
        "votes": meta.votes,
        "created_at": ms_to_datetime(meta.created_at).isoformat(),
        "last_modified": ms_to_datetime(meta.last_modified).isoformat(),
    }


def cmd_pin(args, cz: "CarryZone"):
    """Handle pin subcommands."""
    repo = cz.pins

    if args.pin_action == "add":
        tag = None
        if args.tag:
            tag = RestrictionTag.from_string(args.tag.upper())
            if tag is None:
                raise ValueError(f"Unknown restriction tag: {args.tag}")
        pin = Pin(
            location=Location(latitude=args.latitude, longitude=args.longitude),
            name=args.name,
            status=PinStatus(args.status),
            metadata=PinMetadata(
                notes=args.notes,
                restriction_tag=tag,
                has_security_screening=args.screening,
                has_posted_signage=args.signage,
            ),
        )
        repo.add(pin)
        print(f"✓ Added pin {pin.id} ({pin.status.display_name})")

    elif args.pin_action == "list":
        pins = repo.get_all()
        if args.json:
            print(json.dumps([pin_to_json(p) for p in pins], indent=2))
            return
        if not pins:
            print("No pins yet.")
            return
        print(f"Pins ({len(pins)})")
        print("=" * 50)
        for pin in pins:
            icon = STATUS_ICONS.get(pin.status, "•")
            print(f"{icon} {pin.name or '(unnamed)'} [{pin.status.display_name}]")
            print(f"   {pin.location.latitude:.5f}, {pin.location.longitude:.5f}  id={pin.id}")
            if pin.metadata.restriction_tag:
                print(f"   Restriction: {pin.metadata.restriction_tag.display_name}")
            if pin.metadata.notes:
                print(f"   Notes: {pin.metadata.notes}")

    elif args.pin_action == "cycle":
        if not repo.cycle_status(args.pin_id):
            raise ValueError(f"Pin not found: {args.pin_id}")
        pin = repo.get_by_id(args.pin_id)
        print(f"✓ Pin {args.pin_id} is now {pin.status.display_name}")

    elif args.pin_action == "delete":
        pin = repo.get_by_id(args.pin_id)
        if pin is None:
            raise ValueError(f"Pin not found: {args.pin_id}")
        repo.delete(pin)
        print(f"✓ Deleted pin {args.pin_id}")
