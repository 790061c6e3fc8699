"""
Study queue construction.

New cards are those without a learning state (or still in status New);
review cards are everything else due before the end of the current study
day. Soft-deleted cards never appear.
"""

import logging
from datetime import date, datetime, time, timedelta

from flashmark.domain.models import (
    Card,
    CardState,
    CardStatus,
    Deck,
    EffectiveSettings,
    StudyQueue,
    ensure_utc,
    utc_now,
)
from flashmark.domain.ports import CardStore

logger = logging.getLogger(__name__)


def adjusted_today(daily_reset_hour: int, now: datetime | None = None) -> date:
    """The study day `now` belongs to; before the reset hour it is still yesterday."""
    now = now or utc_now()
    if now.hour < daily_reset_hour:
        return (now - timedelta(days=1)).date()
    return now.date()


def study_day_end(daily_reset_hour: int, now: datetime | None = None) -> datetime:
    now = ensure_utc(now or utc_now())
    next_day = adjusted_today(daily_reset_hour, now) + timedelta(days=1)
    return datetime.combine(next_day, time(hour=daily_reset_hour), tzinfo=now.tzinfo)


def _is_new(state: CardState | None) -> bool:
    return state is None or state.status is CardStatus.NEW


def build_study_queue(
    store: CardStore,
    device_id: str,
    settings: EffectiveSettings,
    deck_path: str | None = None,
    now: datetime | None = None,
) -> StudyQueue:
    """
    Build today's queue for a deck (and its sub-decks) or for everything.

    Args:
        store: Local card store.
        device_id: Whose learning states decide what is due.
        settings: Effective settings of the deck being studied.
        deck_path: Restrict to this deck; None studies all decks.
        now: Reference time, defaults to the current UTC time.
    """
    cutoff = study_day_end(settings.daily_reset_hour, now)
    states = store.list_card_states(device_id)

    new_cards: list[Card] = []
    due: list[tuple[datetime, int, Card]] = []
    for card in store.list_cards(deck_path):
        state = states.get(card.id)
        if _is_new(state):
            if len(new_cards) < settings.new_cards_per_day:
                new_cards.append(card)
        elif state.due_date is None or state.due_date < cutoff:
            due_at = state.due_date or datetime.min.replace(tzinfo=cutoff.tzinfo)
            due.append((due_at, card.id, card))

    due.sort(key=lambda item: (item[0], item[1]))
    review_cards = [card for _, _, card in due[: settings.reviews_per_day]]

    logger.debug(
        f"[study] {deck_path or '*'}: {len(new_cards)} new, {len(review_cards)} due "
        f"(cutoff {cutoff.isoformat()})"
    )
    return StudyQueue(
        new_cards=new_cards,
        review_cards=review_cards,
        new_remaining=max(0, settings.new_cards_per_day - len(new_cards)),
        review_remaining=max(0, settings.reviews_per_day - len(review_cards)),
    )


def list_decks(
    store: CardStore, device_id: str, daily_reset_hour: int = 0, now: datetime | None = None
) -> list[Deck]:
    """Every deck that has live cards, with new and due counts."""
    cutoff = study_day_end(daily_reset_hour, now)
    states = store.list_card_states(device_id)
    decks: dict[str, Deck] = {}

    for card in store.list_cards():
        state = states.get(card.id)
        is_new = _is_new(state)
        is_due = not is_new and (state.due_date is None or state.due_date < cutoff)
        current = decks.get(card.deck_path)
        if current is None:
            current = Deck(
                path=card.deck_path,
                name=card.deck_path.rsplit("/", 1)[-1],
                card_count=0,
                new_count=0,
                due_count=0,
            )
        decks[card.deck_path] = Deck(
            path=current.path,
            name=current.name,
            card_count=current.card_count + 1,
            new_count=current.new_count + int(is_new),
            due_count=current.due_count + int(is_due),
        )

    return [decks[path] for path in sorted(decks)]
