"""
Modifier groups: catalog validation, cart selection resolution and the
canonical form used to compare selections between a cart and saved items.
"""

import json
from collections import defaultdict
from decimal import Decimal

from .models import MenuItem, ModifierGroupIn, ModifierMode, ModifierSelectionIn


class ModifierValidationError(Exception):
    """Raised when a modifier group definition or a cart selection is invalid"""
    def __init__(self, message: str, menu_item_id: int | None = None):
        self.menu_item_id = menu_item_id
        super().__init__(message)


def load_groups(menu_item: MenuItem) -> list[ModifierGroupIn]:
    return [ModifierGroupIn.model_validate(g) for g in (menu_item.modifier_groups or [])]


def validate_groups(groups: list[ModifierGroupIn]) -> None:
    """Check a menu item's modifier group definitions before saving them."""
    seen_groups: set[str] = set()
    for group in groups:
        if group.id in seen_groups:
            raise ModifierValidationError(f"Duplicate modifier group id '{group.id}'")
        seen_groups.add(group.id)

        option_ids = [o.id for o in group.options]
        if len(option_ids) != len(set(option_ids)):
            raise ModifierValidationError(f"Duplicate option id in group '{group.name}'")

        if group.mode == ModifierMode.count:
            if group.min_select < 0 or group.max_select < group.min_select:
                raise ModifierValidationError(
                    f"Group '{group.name}': expected 0 <= min_select <= max_select"
                )
        else:
            if group.pieces < 1 or group.min_per_piece < 0:
                raise ModifierValidationError(
                    f"Group '{group.name}': expected pieces >= 1 and min_per_piece >= 0"
                )


def resolve_modifiers(
    menu_item: MenuItem,
    selections: list[ModifierSelectionIn],
) -> tuple[Decimal, list[dict]]:
    """
    Validate cart selections against the current catalog.

    Returns the per-unit price delta and the snapshot stored on the order
    item. The snapshot copies names and prices so later catalog edits never
    change what was ordered.
    """
    groups = {g.id: g for g in load_groups(menu_item)}

    # (group_id, option_id, piece) -> quantity
    chosen: dict[str, dict[tuple[str, int | None], int]] = defaultdict(lambda: defaultdict(int))
    for sel in selections:
        group = groups.get(sel.group_id)
        if group is None:
            raise ModifierValidationError(
                f"Unknown modifier group '{sel.group_id}' for {menu_item.name}", menu_item.id
            )
        option = next((o for o in group.options if o.id == sel.option_id), None)
        if option is None:
            raise ModifierValidationError(
                f"Unknown option '{sel.option_id}' in group '{group.name}'", menu_item.id
            )
        if not option.available:
            raise ModifierValidationError(f"Option '{option.name}' is not available", menu_item.id)
        if sel.quantity < 1:
            raise ModifierValidationError(f"Option '{option.name}' quantity must be positive", menu_item.id)

        piece = None
        if group.mode == ModifierMode.per_piece:
            if sel.piece is None or not 1 <= sel.piece <= group.pieces:
                raise ModifierValidationError(
                    f"Group '{group.name}' needs a piece between 1 and {group.pieces}", menu_item.id
                )
            piece = sel.piece
        chosen[group.id][(option.id, piece)] += sel.quantity

    unit_delta = Decimal("0")
    snapshot: list[dict] = []
    for group in groups.values():
        picks = chosen.get(group.id, {})
        _check_bounds(menu_item, group, picks)
        if not picks:
            continue

        options = {o.id: o for o in group.options}
        entries = []
        for (option_id, piece), quantity in sorted(picks.items(), key=lambda kv: (kv[0][1] or 0, kv[0][0])):
            option = options[option_id]
            unit_delta += option.price_delta * quantity
            entries.append({
                "option_id": option.id,
                "option_name": option.name,
                "price_delta": str(option.price_delta),
                "quantity": quantity,
                "piece": piece,
            })
        snapshot.append({
            "group_id": group.id,
            "group_name": group.name,
            "mode": group.mode.value,
            "selections": entries,
        })

    return unit_delta, snapshot


def _check_bounds(menu_item: MenuItem, group: ModifierGroupIn, picks: dict) -> None:
    if group.mode == ModifierMode.count:
        total = sum(picks.values())
        if total < group.min_select or total > group.max_select:
            raise ModifierValidationError(
                f"Group '{group.name}' needs between {group.min_select} and "
                f"{group.max_select} selections, got {total}",
                menu_item.id,
            )
        return

    per_piece: dict[int, int] = defaultdict(int)
    for (_, piece), quantity in picks.items():
        per_piece[piece] += quantity
    for piece in range(1, group.pieces + 1):
        if per_piece[piece] < group.min_per_piece:
            raise ModifierValidationError(
                f"Group '{group.name}': piece {piece} needs at least "
                f"{group.min_per_piece} selection(s)",
                menu_item.id,
            )


def canonical_modifiers(modifiers: list) -> str:
    """
    Deterministic serialization of a set of selections.

    Accepts either a stored snapshot (groups with nested selections) or raw
    ``ModifierSelectionIn`` items. Only identity fields take part (group,
    option, piece, quantity) so neither selection order nor later catalog
    renames or price changes make two equal selections look different.
    """
    counts: dict[tuple[str, str, int], int] = defaultdict(int)
    for entry in modifiers or []:
        if isinstance(entry, ModifierSelectionIn):
            counts[(entry.group_id, entry.option_id, entry.piece or 0)] += entry.quantity
            continue
        for sel in entry.get("selections") or []:
            key = (str(entry.get("group_id")), str(sel.get("option_id")), int(sel.get("piece") or 0))
            counts[key] += int(sel.get("quantity") or 0)

    normalized = [
        {"group_id": g, "option_id": o, "piece": p, "quantity": q}
        for (g, o, p), q in sorted(counts.items())
        if q > 0
    ]
    return json.dumps(normalized, sort_keys=True, separators=(",", ":"))
