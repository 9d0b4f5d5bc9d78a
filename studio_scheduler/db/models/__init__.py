from .trainer import Trainer
from .member import Member, MemberStatus
from .training_session import TrainingSession, SessionStatus
from .booking import SessionBooking, BookingStatus
from .audit_log import AuditLog, ActorType
