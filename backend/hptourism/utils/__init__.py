from hptourism.utils.validators import sanitize_tender_by, sanitize_wire_value, validate_app_ref_no

__all__ = ["sanitize_tender_by", "sanitize_wire_value", "validate_app_ref_no"]
