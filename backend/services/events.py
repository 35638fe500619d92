"""
Bus d'événements in-process : la machine d'états publie, les consommateurs
(notifications SMS, ...) réagissent. Un consommateur ne peut jamais annuler
une transition déjà écrite : ses échecs reviennent comme avertissements.
"""
import logging
from typing import Awaitable, Callable, List

from models.parcel import LifecycleEvent

logger = logging.getLogger(__name__)

# Un handler retourne la liste de ses avertissements (vide si tout va bien)
EventHandler = Callable[[LifecycleEvent], Awaitable[List[str]]]


class EventBus:
    def __init__(self):
        self._handlers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    async def publish(self, event: LifecycleEvent) -> List[str]:
        warnings: List[str] = []
        for handler in self._handlers:
            try:
                warnings.extend(await handler(event) or [])
            except Exception as e:
                logger.error(
                    f"Handler {getattr(handler, '__qualname__', handler)} en échec "
                    f"pour {event.event_type.value} : {e}"
                )
                warnings.append(f"Traitement de l'événement {event.event_type.value} échoué : {e}")
        return warnings
