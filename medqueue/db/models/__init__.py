from .appointment import AppointmentModel
from .queue import QueueTicketModel, QueueCounterModel

__all__ = ["AppointmentModel", "QueueTicketModel", "QueueCounterModel"]
