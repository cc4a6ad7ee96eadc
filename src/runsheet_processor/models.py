"""
Runsheet Ownership Models

Immutable records for runsheet rows, per-row analyses and the ownership
ledger. Every record round-trips through a camelCase JSON dict, which is
the shape used by the analysis provider and by checkpoints.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional


ROW_STATUSES = ("pending", "analyzing", "analyzed", "corrected", "approved")
LEASE_STATUSES = ("active", "expired", "none")
OWNER_LEASE_STATUSES = ("leased", "open", "expired_hbp", "unknown")
TRANSFER_TYPES = ("full", "surface_only", "mineral_only")


def _to_float(value: Any, default: Optional[float] = 0.0) -> Optional[float]:
    """Coerce provider output ("80", 80, "80 ac", None) to a float."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").split()[0])
    except (ValueError, IndexError):
        return default


def _to_names(value: Any) -> tuple[str, ...]:
    """Normalize a grantor/grantee field into a tuple of non-empty names."""
    if not value:
        return ()
    if isinstance(value, str):
        value = [value]
    return tuple(str(v).strip() for v in value if v and str(v).strip())


@dataclass(frozen=True)
class LeaseDetails:
    """Structured lease terms, stored verbatim on the leased owner."""

    lessor: Optional[str] = None
    lessee: Optional[str] = None
    dated: Optional[str] = None
    term: Optional[str] = None
    expiration: Optional[str] = None
    document_number: Optional[str] = None
    royalty: Optional[str] = None
    clauses: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['LeaseDetails']:
        if not data or not isinstance(data, dict):
            return None
        return cls(
            lessor=data.get("lessor"),
            lessee=data.get("lessee"),
            dated=data.get("dated"),
            term=data.get("term"),
            expiration=data.get("expiration"),
            document_number=data.get("documentNumber"),
            royalty=data.get("royalty"),
            clauses=tuple(data.get("clauses") or ()),
        )

    def to_dict(self) -> dict:
        return {
            "lessor": self.lessor,
            "lessee": self.lessee,
            "dated": self.dated,
            "term": self.term,
            "expiration": self.expiration,
            "documentNumber": self.document_number,
            "royalty": self.royalty,
            "clauses": list(self.clauses),
        }


@dataclass(frozen=True)
class Analysis:
    """Structured reading of one runsheet row, produced by the analysis provider."""

    document_type: Optional[str] = None
    document_number: Optional[str] = None
    recording_reference: Optional[str] = None
    grantors: tuple[str, ...] = ()
    grantees: tuple[str, ...] = ()
    ownership_change: bool = False
    lease_status: str = "none"
    percentage_change: Optional[float] = None
    description: Optional[str] = None
    effective_date: Optional[str] = None
    acreage: Optional[float] = None
    lease_details: Optional[LeaseDetails] = None
    confidence: Optional[str] = None
    notes: Optional[str] = None

    @property
    def document_reference(self) -> Optional[str]:
        """Recording reference if known, else the document number."""
        return self.recording_reference or self.document_number

    @classmethod
    def from_dict(cls, data: dict) -> 'Analysis':
        lease_status = data.get("leaseStatus") or "none"
        if lease_status not in LEASE_STATUSES:
            lease_status = "none"
        return cls(
            document_type=data.get("documentType"),
            document_number=data.get("documentNumber"),
            recording_reference=data.get("recordingReference"),
            grantors=_to_names(data.get("grantors")),
            grantees=_to_names(data.get("grantees")),
            ownership_change=bool(data.get("ownershipChange")),
            lease_status=lease_status,
            percentage_change=_to_float(data.get("percentageChange"), None),
            description=data.get("description"),
            effective_date=data.get("effectiveDate"),
            acreage=_to_float(data.get("acreage"), None),
            lease_details=LeaseDetails.from_dict(data.get("leaseDetails")),
            confidence=data.get("confidence"),
            notes=data.get("notes"),
        )

    def to_dict(self) -> dict:
        return {
            "documentType": self.document_type,
            "documentNumber": self.document_number,
            "recordingReference": self.recording_reference,
            "grantors": list(self.grantors),
            "grantees": list(self.grantees),
            "ownershipChange": self.ownership_change,
            "leaseStatus": self.lease_status,
            "percentageChange": self.percentage_change,
            "description": self.description,
            "effectiveDate": self.effective_date,
            "acreage": self.acreage,
            "leaseDetails": self.lease_details.to_dict() if self.lease_details else None,
            "confidence": self.confidence,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class DocumentRow:
    """One cleaned runsheet line and where it is in the review workflow."""

    id: str
    row_number: int
    content: str
    status: str = "pending"
    analysis: Optional[Analysis] = None
    user_correction: Optional[Analysis] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'DocumentRow':
        analysis = data.get("analysis")
        correction = data.get("userCorrection")
        status = data.get("status", "pending")
        return cls(
            id=data["id"],
            row_number=int(data["rowNumber"]),
            content=data.get("content", ""),
            status=status if status in ROW_STATUSES else "pending",
            analysis=Analysis.from_dict(analysis) if analysis else None,
            user_correction=Analysis.from_dict(correction) if correction else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rowNumber": self.row_number,
            "content": self.content,
            "status": self.status,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "userCorrection": self.user_correction.to_dict() if self.user_correction else None,
        }


@dataclass(frozen=True)
class Owner:
    """A holder of surface and/or mineral interest in the tract."""

    owner_id: str
    name: str
    surface_percentage: float = 0.0
    mineral_percentage: float = 0.0
    net_surface_acres: float = 0.0
    net_mineral_acres: float = 0.0
    acquisition_document: Optional[str] = None
    current_lease_status: str = "unknown"
    lease_details: Optional[LeaseDetails] = None
    # Names merged into this owner through confirmed AKA matches
    aliases: tuple[str, ...] = ()

    @property
    def names(self) -> tuple[str, ...]:
        return (self.name,) + self.aliases

    def with_acres(self, total_acres: float) -> 'Owner':
        """Recompute net acres from the percentages."""
        return replace(
            self,
            net_surface_acres=self.surface_percentage / 100 * total_acres,
            net_mineral_acres=self.mineral_percentage / 100 * total_acres,
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'Owner':
        lease_status = data.get("currentLeaseStatus", "unknown")
        return cls(
            owner_id=data.get("ownerId") or f"owner-{data['name']}",
            name=data["name"],
            surface_percentage=_to_float(data.get("surfacePercentage")),
            mineral_percentage=_to_float(data.get("mineralPercentage")),
            net_surface_acres=_to_float(data.get("netSurfaceAcres")),
            net_mineral_acres=_to_float(data.get("netMineralAcres")),
            acquisition_document=data.get("acquisitionDocument"),
            current_lease_status=lease_status if lease_status in OWNER_LEASE_STATUSES else "unknown",
            lease_details=LeaseDetails.from_dict(data.get("leaseDetails")),
            aliases=tuple(data.get("aliases") or ()),
        )

    def to_dict(self) -> dict:
        return {
            "ownerId": self.owner_id,
            "name": self.name,
            "surfacePercentage": self.surface_percentage,
            "mineralPercentage": self.mineral_percentage,
            "netSurfaceAcres": self.net_surface_acres,
            "netMineralAcres": self.net_mineral_acres,
            "acquisitionDocument": self.acquisition_document,
            "currentLeaseStatus": self.current_lease_status,
            "leaseDetails": self.lease_details.to_dict() if self.lease_details else None,
            "aliases": list(self.aliases),
        }


@dataclass(frozen=True)
class PendingTransfer:
    """A conveyance recorded before its grantor appeared in the ledger.

    Percentages are shares of whatever the grantor holds when the transfer
    is resolved (100 = all of it).
    """

    grantor_name: str
    grantee_name: str
    surface_percentage: float
    mineral_percentage: float
    document_reference: str
    row_index: int
    transfer_type: str = "full"
    reserved_mineral_percentage: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'PendingTransfer':
        reserved = data.get("reservedMineralPercentage")
        transfer_type = data.get("transferType", "full")
        return cls(
            grantor_name=data["grantorName"],
            grantee_name=data["granteeName"],
            surface_percentage=_to_float(data.get("surfacePercentage")),
            mineral_percentage=_to_float(data.get("mineralPercentage")),
            document_reference=data.get("documentReference", ""),
            row_index=int(data.get("rowIndex", -1)),
            transfer_type=transfer_type if transfer_type in TRANSFER_TYPES else "full",
            reserved_mineral_percentage=_to_float(reserved, None),
        )

    def to_dict(self) -> dict:
        return {
            "grantorName": self.grantor_name,
            "granteeName": self.grantee_name,
            "surfacePercentage": self.surface_percentage,
            "mineralPercentage": self.mineral_percentage,
            "documentReference": self.document_reference,
            "rowIndex": self.row_index,
            "transferType": self.transfer_type,
            "reservedMineralPercentage": self.reserved_mineral_percentage,
        }


@dataclass(frozen=True)
class OngoingOwnership:
    """Ledger state after some prefix of the runsheet has been applied."""

    owners: tuple[Owner, ...] = ()
    pending_transfers: tuple[PendingTransfer, ...] = ()
    total_surface_percentage: float = 0.0
    total_mineral_percentage: float = 0.0
    total_acres: float = 0.0
    last_updated_row: int = -1
    # Row ids whose ownership effect is already in this state
    applied_rows: tuple[str, ...] = ()
    next_owner_number: int = 1

    @classmethod
    def empty(cls, total_acres: float = 0.0) -> 'OngoingOwnership':
        return cls(total_acres=float(total_acres or 0))

    @classmethod
    def from_dict(cls, data: dict) -> 'OngoingOwnership':
        owners = tuple(Owner.from_dict(o) for o in data.get("owners") or [])
        return cls(
            owners=owners,
            pending_transfers=tuple(
                PendingTransfer.from_dict(p) for p in data.get("pendingTransfers") or []
            ),
            total_surface_percentage=_to_float(data.get("totalSurfacePercentage")),
            total_mineral_percentage=_to_float(data.get("totalMineralPercentage")),
            total_acres=_to_float(data.get("totalAcres")),
            last_updated_row=int(data.get("lastUpdatedRow", -1)),
            applied_rows=tuple(data.get("appliedRows") or ()),
            next_owner_number=int(data.get("nextOwnerNumber", len(owners) + 1)),
        )

    def to_dict(self) -> dict:
        return {
            "owners": [o.to_dict() for o in self.owners],
            "pendingTransfers": [p.to_dict() for p in self.pending_transfers],
            "totalSurfacePercentage": self.total_surface_percentage,
            "totalMineralPercentage": self.total_mineral_percentage,
            "totalAcres": self.total_acres,
            "lastUpdatedRow": self.last_updated_row,
            "appliedRows": list(self.applied_rows),
            "nextOwnerNumber": self.next_owner_number,
        }


@dataclass(frozen=True)
class NameMatch:
    """An existing owner that a new grantee might be."""

    owner_id: str
    owner_name: str
    confidence: str
    reason: str

    def to_dict(self) -> dict:
        return {
            "ownerId": self.owner_id,
            "ownerName": self.owner_name,
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class GranteeMatches:
    """Candidate owners for one grantee of the row being applied."""

    new_name: str
    matches: tuple[NameMatch, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "newName": self.new_name,
            "matches": [m.to_dict() for m in self.matches],
        }


@dataclass(frozen=True)
class AnalysisRequest:
    """What the analysis provider receives for one row."""

    row_content: str
    row_number: int
    prospect: str
    total_acres: float
    current_ownership: OngoingOwnership

    def to_dict(self) -> dict:
        return {
            "rowContent": self.row_content,
            "rowNumber": self.row_number,
            "prospect": self.prospect,
            "totalAcres": self.total_acres,
            "currentOwnership": self.current_ownership.to_dict(),
        }
