from __future__ import annotations

from ..extensions import db
from portal.time_utils import to_utc_z, to_iso_date


SHIPMENT_STATUS_PENDING = "pending"
SHIPMENT_STATUS_PREPARING = "preparing"
SHIPMENT_STATUS_SHIPPED = "shipped"
SHIPMENT_STATUS_IN_TRANSIT = "in_transit"
SHIPMENT_STATUS_OUT_FOR_DELIVERY = "out_for_delivery"
SHIPMENT_STATUS_DELIVERED = "delivered"
SHIPMENT_STATUS_FAILED = "failed"
SHIPMENT_STATUS_CANCELLED = "cancelled"
SHIPMENT_STATUS_RETURNED = "returned"
SHIPMENT_STATUSES = (
    SHIPMENT_STATUS_PENDING,
    SHIPMENT_STATUS_PREPARING,
    SHIPMENT_STATUS_SHIPPED,
    SHIPMENT_STATUS_IN_TRANSIT,
    SHIPMENT_STATUS_OUT_FOR_DELIVERY,
    SHIPMENT_STATUS_DELIVERED,
    SHIPMENT_STATUS_FAILED,
    SHIPMENT_STATUS_CANCELLED,
    SHIPMENT_STATUS_RETURNED,
)
# Statuses in which the package is with a carrier.
SHIPMENT_MOVING_STATUSES = (
    SHIPMENT_STATUS_SHIPPED,
    SHIPMENT_STATUS_IN_TRANSIT,
    SHIPMENT_STATUS_OUT_FOR_DELIVERY,
)

CARRIERS = ("usps", "ups", "fedex", "dhl", "other", "hand_delivery")

# Fields a carrier webhook may touch without a status change.
TRACKING_FIELDS = ("tracking_number", "tracking_url", "expected_delivery_date", "location")


class Shipment(db.Model):
    """
    Outbound shipment for a project.

    notes is visible to the customer; internal_notes is staff only and is
    dropped by to_dict(include_internal=False).
    """
    __tablename__ = "shipments"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'preparing', 'shipped', 'in_transit', 'out_for_delivery', "
            "'delivered', 'failed', 'cancelled', 'returned')",
            name="ck_shipments_status",
        ),
        db.CheckConstraint(
            "carrier IN ('usps', 'ups', 'fedex', 'dhl', 'other', 'hand_delivery')",
            name="ck_shipments_carrier",
        ),
        db.CheckConstraint("package_count >= 1", name="ck_shipments_package_count"),
        db.CheckConstraint(
            "status != 'delivered' OR actual_delivery_date IS NOT NULL",
            name="ck_shipments_delivered_has_date",
        ),
        db.Index("ix_shipments_org_status", "organization_id", "status"),
        db.Index("ix_shipments_expected_delivery", "expected_delivery_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    shipment_number = db.Column(db.String(50), nullable=False, unique=True, index=True)
    carrier = db.Column(db.String(20), nullable=False)
    tracking_number = db.Column(db.String(100), nullable=True, index=True)
    tracking_url = db.Column(db.String(500), nullable=True)

    status = db.Column(db.String(20), nullable=False, default=SHIPMENT_STATUS_PENDING)
    status_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    expected_ship_date = db.Column(db.Date, nullable=True)
    actual_ship_date = db.Column(db.Date, nullable=True)
    expected_delivery_date = db.Column(db.Date, nullable=True)
    actual_delivery_date = db.Column(db.Date, nullable=True)

    ship_from_address = db.Column(db.JSON, nullable=True)
    ship_to_address = db.Column(db.JSON, nullable=False)

    package_count = db.Column(db.Integer, nullable=False, default=1)
    weight_lbs = db.Column(db.Numeric(10, 2), nullable=True)
    dimensions_inches = db.Column(db.String(50), nullable=True)

    shipping_cost_cents = db.Column(db.Integer, nullable=True)
    insurance_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    internal_notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    project = db.relationship("Project", backref=db.backref("shipments", lazy=True, passive_deletes=True))
    organization = db.relationship("Organization")

    def __repr__(self) -> str:
        return f"<Shipment id={self.id} number={self.shipment_number!r} status={self.status}>"

    def to_dict(self, include_internal: bool = True) -> dict:
        data = {
            "id": self.id,
            "project_id": self.project_id,
            "organization_id": self.organization_id,
            "shipment_number": self.shipment_number,
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "status": self.status,
            "status_updated_at": to_utc_z(self.status_updated_at),
            "expected_ship_date": to_iso_date(self.expected_ship_date),
            "actual_ship_date": to_iso_date(self.actual_ship_date),
            "expected_delivery_date": to_iso_date(self.expected_delivery_date),
            "actual_delivery_date": to_iso_date(self.actual_delivery_date),
            "ship_from_address": self.ship_from_address,
            "ship_to_address": self.ship_to_address,
            "package_count": self.package_count,
            "weight_lbs": str(self.weight_lbs) if self.weight_lbs is not None else None,
            "dimensions_inches": self.dimensions_inches,
            "shipping_cost_cents": self.shipping_cost_cents,
            "insurance_cost_cents": self.insurance_cost_cents,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_internal:
            data["internal_notes"] = self.internal_notes
        return data


class ShipmentEvent(db.Model):
    """
    Shipment tracking and status history.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "shipment_events"
    __table_args__ = (
        db.Index("ix_shipment_events_shipment_created", "shipment_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = db.Column(db.String(50), nullable=False, index=True)
    event_data = db.Column(db.JSON, nullable=True)

    old_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=True)
    location = db.Column(db.String(255), nullable=True)

    triggered_by = db.Column(db.Integer, nullable=True, index=True)
    triggered_by_system = db.Column(db.String(50), nullable=True)

    notification_sent = db.Column(db.Boolean, nullable=False, default=False)
    notification_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    shipment = db.relationship("Shipment", backref=db.backref("events", lazy=True, passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shipment_id": self.shipment_id,
            "event_type": self.event_type,
            "event_data": self.event_data,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "location": self.location,
            "triggered_by": self.triggered_by,
            "triggered_by_system": self.triggered_by_system,
            "notification_sent": self.notification_sent,
            "notification_sent_at": to_utc_z(self.notification_sent_at),
            "created_at": to_utc_z(self.created_at),
        }
