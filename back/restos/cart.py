"""
Order-entry cart as an immutable value.

Every operation returns a new ``Cart``; nothing is mutated in place, so the
order-entry flow can be driven and tested without any UI framework.
"""

from dataclasses import dataclass, replace
from decimal import Decimal

from . import models
from .plates import split_notes
from .reconcile import key_for_item

# (group_id, option_id, quantity, piece)
Selection = tuple[str, str, int, int | None]


@dataclass(frozen=True)
class CartLine:
    menu_item_id: int
    name: str
    unit_price: Decimal  # base price plus modifier deltas
    quantity: int
    plate: int = 1
    notes: str = ""
    modifiers: tuple[Selection, ...] = ()

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def same_line(self, other: "CartLine") -> bool:
        return (
            self.menu_item_id == other.menu_item_id
            and self.plate == other.plate
            and self.notes.strip() == other.notes.strip()
            and sorted(self.modifiers, key=_selection_sort_key) == sorted(other.modifiers, key=_selection_sort_key)
        )


@dataclass(frozen=True)
class Cart:
    lines: tuple[CartLine, ...] = ()
    tip: Decimal = Decimal("0")

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0"))

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tip

    @property
    def is_empty(self) -> bool:
        return not self.lines


def _selection_sort_key(sel: Selection) -> tuple:
    return sel[0], sel[1], sel[3] or 0, sel[2]


def add_item(
    cart: Cart,
    menu_item: models.MenuItem,
    plate: int = 1,
    notes: str = "",
    modifiers: tuple[Selection, ...] = (),
    unit_delta: Decimal = Decimal("0"),
) -> Cart:
    """Add one unit; an identical line already in the cart is incremented."""
    new_line = CartLine(
        menu_item_id=menu_item.id,
        name=menu_item.name,
        unit_price=Decimal(menu_item.price) + unit_delta,
        quantity=1,
        plate=plate,
        notes=notes,
        modifiers=tuple(modifiers),
    )
    for index, line in enumerate(cart.lines):
        if line.same_line(new_line):
            return update_quantity(cart, index, 1)
    return replace(cart, lines=cart.lines + (new_line,))


def update_quantity(cart: Cart, index: int, delta: int) -> Cart:
    """Change a line's quantity; it never drops below 1 (use remove_line)."""
    line = cart.lines[index]
    updated = replace(line, quantity=max(1, line.quantity + delta))
    return replace(cart, lines=cart.lines[:index] + (updated,) + cart.lines[index + 1:])


def remove_line(cart: Cart, index: int) -> Cart:
    return replace(cart, lines=cart.lines[:index] + cart.lines[index + 1:])


def set_notes(cart: Cart, index: int, notes: str) -> Cart:
    line = replace(cart.lines[index], notes=notes)
    return replace(cart, lines=cart.lines[:index] + (line,) + cart.lines[index + 1:])


def set_plate(cart: Cart, index: int, plate: int) -> Cart:
    line = replace(cart.lines[index], plate=max(1, plate))
    return replace(cart, lines=cart.lines[:index] + (line,) + cart.lines[index + 1:])


def set_tip(cart: Cart, tip: Decimal) -> Cart:
    return replace(cart, tip=max(Decimal("0"), Decimal(tip)))


def clear(cart: Cart) -> Cart:
    return Cart()


def to_cart_lines(cart: Cart) -> list[models.CartLineIn]:
    """Request payload for create/update order."""
    return [
        models.CartLineIn(
            menu_item_id=line.menu_item_id,
            quantity=line.quantity,
            plate=line.plate,
            notes=line.notes,
            modifiers=[
                models.ModifierSelectionIn(group_id=g, option_id=o, quantity=q, piece=p)
                for g, o, q, p in line.modifiers
            ],
        )
        for line in cart.lines
    ]


def _selections_from_snapshot(snapshot: list[dict] | None) -> tuple[Selection, ...]:
    selections = []
    for group in snapshot or []:
        for sel in group.get("selections") or []:
            selections.append((
                str(group.get("group_id")),
                str(sel.get("option_id")),
                int(sel.get("quantity") or 0),
                sel.get("piece"),
            ))
    return tuple(sorted(selections, key=_selection_sort_key))


def cart_from_items(items: list[models.OrderItem], tip: Decimal = Decimal("0")) -> Cart:
    """
    Rebuild the editable cart from an order's active items, one line per
    logical line (rows sharing a key are summed, oldest row first).
    """
    lines: dict = {}
    ordered = sorted(items, key=lambda i: (models.as_utc(i.created_at), i.id or 0))
    for item in ordered:
        if item.status == models.OrderItemStatus.cancelled:
            continue
        key = key_for_item(item)
        if key in lines:
            lines[key] = replace(lines[key], quantity=lines[key].quantity + item.quantity)
            continue
        plate, notes = split_notes(item.notes)
        lines[key] = CartLine(
            menu_item_id=item.menu_item_id,
            name=item.menu_item.name if item.menu_item else "Unknown Item",
            unit_price=Decimal(item.price_at_time),
            quantity=item.quantity,
            plate=plate,
            notes=notes,
            modifiers=_selections_from_snapshot(item.modifiers),
        )
    return Cart(lines=tuple(lines.values()), tip=Decimal(tip or 0))
