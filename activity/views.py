from flask import request

from middleware.permissions import permission_required
from utilities.database import ActivityLog
from utilities.responses import paginated
from utilities.validators import clean_str, pagination_args, parse_int
from . import activity_bp


@activity_bp.get("")
@permission_required("system.logs")
def list_activity():
    page, limit = pagination_args()
    query = ActivityLog.query

    action = clean_str(request.args.get("action"))
    if action:
        query = query.filter(ActivityLog.action == action)
    target_type = clean_str(request.args.get("target_type"))
    if target_type:
        query = query.filter(ActivityLog.target_type == target_type)
    for arg, column in (("target_id", ActivityLog.target_id), ("user_id", ActivityLog.user_id)):
        value = parse_int(request.args.get(arg))
        if value:
            query = query.filter(column == value)

    total = query.count()
    entries = (
        query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return paginated([e.to_dict() for e in entries], page, limit, total, "Activity log retrieved successfully")
