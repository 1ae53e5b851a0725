"""
Award Engine
Organisation directory and approval-matrix models.

Models:
    - Vendor:            bidding company
    - Department:        requesting unit; ``head_id`` approves its requisitions
    - Role:              named organisational role (e.g. "Director", "Committee")
    - User:              staff member or vendor contact, N:M with Role
    - ApprovalThreshold: award-value tier of the approval matrix
    - ApprovalStep:      one ordered reviewing role inside a tier

The post-bid review chain is data: the tier whose [min_amount, max_amount]
range contains the award value supplies its steps in ``order``.
"""

from datetime import datetime, timezone

from award_engine.models import db

user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Vendor(db.Model):
    __tablename__ = "vendors"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {"id": self.id, "name": self.name}

    def __repr__(self):
        return f"<Vendor {self.id}: {self.name}>"


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False, unique=True)
    head_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL", use_alter=True, name="fk_departments_head_id"),
        nullable=True,
        comment="Approving head; NULL sends submitted requisitions straight to PreApproved",
    )

    def to_dict(self):
        return {"id": self.id, "name": self.name, "head_id": self.head_id}

    def __repr__(self):
        return f"<Department {self.id}: {self.name}>"


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "description": self.description}

    def __repr__(self):
        return f"<Role {self.name}>"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
    )
    vendor_id = db.Column(
        db.Integer, db.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=True,
        comment="Set for vendor contacts; they respond to award offers",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    roles = db.relationship("Role", secondary=user_roles, lazy="selectin")

    @property
    def role_names(self) -> list[str]:
        return [r.name for r in self.roles]

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "department_id": self.department_id,
            "vendor_id": self.vendor_id,
            "roles": self.role_names,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class ApprovalThreshold(db.Model):
    """One tier of the approval matrix: award values in [min_amount, max_amount]."""

    __tablename__ = "approval_thresholds"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    min_amount = db.Column(db.Float, nullable=False, default=0.0)
    max_amount = db.Column(db.Float, nullable=True, comment="NULL = unbounded")

    steps = db.relationship(
        "ApprovalStep",
        backref="threshold",
        cascade="all, delete-orphan",
        order_by="ApprovalStep.order",
        lazy="selectin",
    )

    def contains(self, amount: float) -> bool:
        return amount >= self.min_amount and (self.max_amount is None or amount <= self.max_amount)

    @property
    def role_chain(self) -> list[str]:
        return [s.role_name for s in self.steps]

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "min_amount": self.min_amount,
            "max_amount": self.max_amount,
            "steps": self.role_chain,
        }

    def __repr__(self):
        return f"<ApprovalThreshold {self.name}: {self.min_amount}-{self.max_amount}>"


class ApprovalStep(db.Model):
    __tablename__ = "approval_steps"
    __table_args__ = (
        db.UniqueConstraint("threshold_id", "order", name="uq_approval_step_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    threshold_id = db.Column(
        db.Integer, db.ForeignKey("approval_thresholds.id", ondelete="CASCADE"), nullable=False,
    )
    order = db.Column(db.Integer, nullable=False)
    role_name = db.Column(db.String(100), nullable=False)

    def __repr__(self):
        return f"<ApprovalStep {self.order}: {self.role_name}>"
