from .producer import InMemoryNotifier, Notifier, RabbitMQNotifier, notify_best_effort, order_event

__all__ = [
    "InMemoryNotifier",
    "Notifier",
    "RabbitMQNotifier",
    "notify_best_effort",
    "order_event",
]
