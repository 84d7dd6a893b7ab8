from perfreview.models.audit_event import AuditEvent
from perfreview.models.competency import Competency
from perfreview.models.competency_rating import CompetencyRating
from perfreview.models.evaluation import Evaluation
from perfreview.models.evaluation_cycle import EvaluationCycle, EvaluationPhase
from perfreview.models.idempotency import IdempotencyKey
from perfreview.models.organization import Organization
from perfreview.models.peer_nomination import PeerNomination
from perfreview.models.team import Team, TeamMember
from perfreview.models.user import User

__all__ = [ "AuditEvent", "Competency", "CompetencyRating",
           "Evaluation", "EvaluationCycle", "EvaluationPhase",
           "IdempotencyKey", "Organization", "PeerNomination",
           "Team", "TeamMember", "User" ]
