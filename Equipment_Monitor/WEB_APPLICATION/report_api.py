#!/usr/bin/env python3
"""
Health Report API
Flask application factory and the /api/reports blueprint: generate, list,
fetch, annotate and delete equipment health reports.
"""

import math
from functools import wraps
from typing import Any, Optional

import structlog
from flask import Flask, Blueprint, current_app, g, jsonify, request
from flask_cors import CORS
from marshmallow import Schema, fields, validate, validates_schema, ValidationError, RAISE
from sqlalchemy.exc import SQLAlchemyError

from Equipment_Monitor.AI_MODULES.exceptions import (
    EquipmentNotFoundError, InvalidReportRequestError, InvalidWeightsError, ReportNotFoundError,
    SampleFetchTimeoutError
)
from Equipment_Monitor.CONFIG.app_config import Config
from Equipment_Monitor.CONFIG.logging_config import setup_logging
from Equipment_Monitor.DATA_MANAGEMENT.database_manager import DatabaseManager
from Equipment_Monitor.DATA_MANAGEMENT.stores import ReportFilters
from Equipment_Monitor.REPORTS.health_report_generator import HealthReportGenerator
from Equipment_Monitor.REPORTS.report_models import ReportType
from Equipment_Monitor.UTILITIES.time_utils import parse_timestamp, utc_now, to_iso

logger = structlog.get_logger(__name__)

DEFAULT_USER = 'system'
MAX_PAGE_SIZE = 100


# ==================== STANDARDIZED API RESPONSE HELPER ====================
def create_standard_response(data: Any = None, error: str = None, status_code: int = 200,
                             details: Any = None) -> tuple:
    """Creates a standardized JSON response."""
    if error:
        response = {"error": error}
        if details:
            response["details"] = details
        if status_code == 200:
            if "not found" in error.lower():
                status_code = 404
            elif "validation failed" in error.lower():
                status_code = 400
            else:
                status_code = 500
    else:
        response = {"data": data}

    return jsonify(response), status_code


# ==================== INPUT VALIDATION SCHEMAS (Marshmallow) ====================
class Timestamp(fields.Field):
    """ISO-8601 string or epoch milliseconds, loaded as a naive UTC datetime."""

    def _deserialize(self, value, attr, data, **kwargs):
        try:
            return parse_timestamp(value)
        except (TypeError, ValueError, OverflowError, OSError) as e:
            raise ValidationError("Not a valid timestamp.") from e


class GenerateReportSchema(Schema):
    class Meta:
        unknown = RAISE

    equipment_id = fields.Str(validate=validate.Length(min=1))
    equipment_ids = fields.List(fields.Str(validate=validate.Length(min=1)), validate=validate.Length(min=1))
    start_time = Timestamp(required=True, error_messages={"required": "start_time is required."})
    end_time = Timestamp(required=True, error_messages={"required": "end_time is required."})
    weights = fields.Dict(keys=fields.Str(), values=fields.Float(allow_nan=False))

    @validates_schema
    def validate_request(self, data, **kwargs):
        has_single = 'equipment_id' in data
        has_many = 'equipment_ids' in data
        if has_single == has_many:
            raise ValidationError("Provide exactly one of equipment_id or equipment_ids.", 'equipment_id')
        if data['start_time'] >= data['end_time']:
            raise ValidationError("start_time must be before end_time.", 'start_time')


class ReportQuerySchema(Schema):
    class Meta:
        unknown = RAISE

    equipment_id = fields.Str()
    report_type = fields.Str(validate=validate.OneOf([t.value for t in ReportType]))
    start_time = Timestamp()
    end_time = Timestamp()
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    page_size = fields.Int(load_default=None, validate=validate.Range(min=1, max=MAX_PAGE_SIZE))


class UpdateReportSchema(Schema):
    class Meta:
        unknown = RAISE

    remarks = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    additional_notes = fields.Str(allow_none=True, validate=validate.Length(max=5000))

    @validates_schema
    def validate_annotations(self, data, **kwargs):
        if not data:
            raise ValidationError("Provide remarks and/or additional_notes.")


# Decorator for HTTP JSON validation
def validate_json(schema: Schema):
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            json_data = request.get_json(silent=True)
            if not isinstance(json_data, dict):
                logger.warning("Validation failed: No JSON object received.")
                return create_standard_response(error="Invalid JSON request", status_code=400)
            try:
                g.validated_data = schema.load(json_data)
            except ValidationError as err:
                logger.warning("Validation failed", errors=err.messages)
                return create_standard_response(error="Validation failed", status_code=400, details=err.messages)
            return f(*args, **kwargs)
        return wrapper
    return decorator


def current_user() -> str:
    return (request.headers.get('X-User-Id') or '').strip() or DEFAULT_USER


# ==================== REPORT BLUEPRINT ====================
reports_bp = Blueprint('reports', __name__, url_prefix='/api/reports')
health_bp = Blueprint('health', __name__, url_prefix='/api')


@health_bp.route('/health')
def health_check():
    return create_standard_response(data={"status": "ok", "timestamp": to_iso(utc_now())})


@reports_bp.route('/generate', methods=['POST'])
@validate_json(GenerateReportSchema())
def generate_report():
    payload = g.validated_data
    generator: HealthReportGenerator = current_app.extensions["health_report_generator"]
    equipment_ids = payload.get('equipment_ids') or payload['equipment_id']
    report = generator.generate_report(
        equipment_ids,
        payload['start_time'],
        payload['end_time'],
        requested_by=current_user(),
        weights=payload.get('weights'),
    )
    return create_standard_response(data=report.to_dict(), status_code=201)


@reports_bp.route('', methods=['GET'])
@reports_bp.route('/', methods=['GET'])
def list_reports():
    try:
        query = ReportQuerySchema().load(request.args.to_dict())
    except ValidationError as err:
        logger.warning("Validation failed", errors=err.messages)
        return create_standard_response(error="Validation failed", status_code=400, details=err.messages)

    page = query['page']
    page_size = query.get('page_size') or current_app.config['REPORT_PAGE_SIZE']
    filters = ReportFilters(
        equipment_id=query.get('equipment_id'),
        report_type=ReportType(query['report_type']) if query.get('report_type') else None,
        start_time=query.get('start_time'),
        end_time=query.get('end_time'),
    )
    repository = current_app.extensions["health_report_generator"].repository
    items, total = repository.list(filters, page, page_size)
    return create_standard_response(data={
        "items": [r.to_dict() for r in items],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size) if total else 0,
    })


@reports_bp.route('/<string:report_id>', methods=['GET'])
def get_report(report_id):
    repository = current_app.extensions["health_report_generator"].repository
    return create_standard_response(data=repository.get(report_id).to_dict())


@reports_bp.route('/<string:report_id>', methods=['PATCH'])
@validate_json(UpdateReportSchema())
def update_report(report_id):
    payload = g.validated_data
    repository = current_app.extensions["health_report_generator"].repository
    report = repository.update_annotations(
        report_id,
        remarks=payload.get('remarks'),
        additional_notes=payload.get('additional_notes'),
    )
    logger.info("Report annotated", report_id=report_id, user=current_user())
    return create_standard_response(data=report.to_dict())


@reports_bp.route('/<string:report_id>', methods=['DELETE'])
def delete_report(report_id):
    repository = current_app.extensions["health_report_generator"].repository
    repository.delete(report_id)
    logger.info("Report deleted", report_id=report_id, user=current_user())
    return create_standard_response(data={"deleted": report_id})


# ==================== ERROR HANDLERS ====================
def register_error_handlers(app: Flask):

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning("404 Not Found", url=request.url)
        return create_standard_response(error="Resource not found", status_code=404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return create_standard_response(error="Method not allowed", status_code=405)

    @app.errorhandler(EquipmentNotFoundError)
    @app.errorhandler(ReportNotFoundError)
    def handle_not_found(e):
        logger.warning("Lookup failed", error=str(e))
        return create_standard_response(error=str(e), status_code=404)

    @app.errorhandler(InvalidReportRequestError)
    @app.errorhandler(InvalidWeightsError)
    def handle_bad_request(e):
        logger.warning("Invalid report request", error=str(e))
        return create_standard_response(error=f"Validation failed: {e}", status_code=400)

    @app.errorhandler(SampleFetchTimeoutError)
    def handle_timeout(e):
        logger.error("Sample fetch timed out", equipment_id=e.equipment_id, timeout=e.timeout)
        return create_standard_response(error=str(e), status_code=504)

    @app.errorhandler(SQLAlchemyError)
    def handle_db_exception(e):
        logger.error("Database error occurred", error=str(e), exc_info=True)
        return create_standard_response(error="Database operation failed", status_code=500)

    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        logger.warning("API Input Validation Error", errors=error.messages)
        return create_standard_response(error="Validation failed", status_code=400, details=error.messages)

    @app.errorhandler(500)
    def internal_error(error):
        logger.error("500 Internal Server Error", error=str(error))
        return create_standard_response(error="Internal server error", status_code=500)

    logger.info("Error handlers registered.")


# ==================== APPLICATION FACTORY ====================
def create_app(cfg: Optional[Config] = None,
               db: Optional[DatabaseManager] = None,
               generator: Optional[HealthReportGenerator] = None) -> Flask:
    """
    Build the Flask application.

    Args:
        cfg: Configuration (a fresh Config is read from the environment by default).
        db: Database manager; created from cfg.DATABASE_URL when omitted.
        generator: Pre-wired report generator; built from cfg and db when omitted.
    """
    cfg = cfg or Config()
    app = Flask(__name__)
    app.config.update(
        DEBUG=cfg.DEBUG,
        CORS_ALLOWED_ORIGINS=cfg.CORS_ALLOWED_ORIGINS,
        REPORT_PAGE_SIZE=min(max(1, cfg.REPORT_PAGE_SIZE), MAX_PAGE_SIZE),
    )

    if generator is None:
        db = db or DatabaseManager(cfg.DATABASE_URL, echo=cfg.DB_ECHO)
        generator = HealthReportGenerator.from_config(db, cfg)
    app.extensions["health_report_generator"] = generator
    if db is not None:
        app.extensions["database_manager"] = db

    CORS(app,
         origins=app.config['CORS_ALLOWED_ORIGINS'],
         allow_headers=["Content-Type", "X-User-Id"])

    @app.before_request
    def log_request_info():
        structlog.contextvars.bind_contextvars(
            remote_addr=request.remote_addr,
            method=request.method,
            path=request.path,
            endpoint=request.endpoint,
        )
        logger.info("Request received")

    @app.after_request
    def log_response_info(response):
        logger.info("Request completed", status_code=response.status_code)
        structlog.contextvars.clear_contextvars()
        return response

    app.register_blueprint(health_bp)
    app.register_blueprint(reports_bp)
    register_error_handlers(app)
    logger.info("Flask Blueprints registered.", origins=app.config['CORS_ALLOWED_ORIGINS'])
    return app


if __name__ == '__main__':
    from Equipment_Monitor.CONFIG.app_config import config

    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)
    create_app(config).run(host='0.0.0.0', port=5000)
