"""Exception hierarchy for the health assessment engine."""


class HealthAssessmentError(Exception):
    """Base class for all engine errors."""


class ProfileConfigurationError(HealthAssessmentError, ValueError):
    """A metric profile or profile override file is invalid."""


class InvalidWeightsError(HealthAssessmentError, ValueError):
    """Custom metric weights are malformed (e.g. negative)."""


class InvalidReportRequestError(HealthAssessmentError, ValueError):
    """The report request itself is malformed (empty ids, inverted window)."""


class EquipmentNotFoundError(HealthAssessmentError, LookupError):
    """One or more requested equipment ids are not registered."""

    def __init__(self, equipment_id: str):
        self.equipment_id = equipment_id
        super().__init__(f"Equipment {equipment_id} not found")


class ReportNotFoundError(HealthAssessmentError, LookupError):
    """No persisted health report has the requested id."""

    def __init__(self, report_id: str):
        self.report_id = report_id
        super().__init__(f"Health report {report_id} not found")


class SampleFetchTimeoutError(HealthAssessmentError, TimeoutError):
    """The time-series store did not answer within the caller's timeout."""

    def __init__(self, equipment_id: str, timeout: float):
        self.equipment_id = equipment_id
        self.timeout = timeout
        super().__init__(f"Sample fetch for equipment {equipment_id} exceeded {timeout:.1f}s")
