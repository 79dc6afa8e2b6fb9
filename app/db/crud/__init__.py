"""
CRUD operations package.
"""

# Import from base crud module
from ..base_crud import (
    create_user, get_user, get_user_by_email, get_user_by_verification_token, get_user_by_reset_token,
    get_users_with_api_keys, update_user, delete_user, get_all_users, suspend_user, activate_user, assign_plan,
    get_users_for_monthly_report_generation, get_users_with_expiring_trials,
    create_call, get_call, get_calls, update_call, delete_call, get_calls_by_agent_id
)

# Import from notification crud module
from .notification_crud import (
    get_notifications, get_notification, create_notification, mark_notification_as_read,
    mark_all_notifications_as_read, delete_notification, get_unread_notifications_count,
    get_notification_preferences, upsert_notification_preferences,
    get_monthly_reports, get_monthly_report, get_monthly_report_by_period, create_monthly_report
)

# Import from marketing crud module
from .marketing_crud import (
    get_contacts, get_contacts_by_filters, get_contact, get_contact_by_id, get_contact_by_email,
    get_contact_by_phone, create_contact, update_contact, delete_contact, increment_contact_stats,
    add_consent_history, get_consent_history, import_contacts,
    get_segments, get_segment, create_segment, update_segment, delete_segment,
    get_campaigns, get_campaign, get_due_scheduled_campaigns, create_campaign, update_campaign,
    delete_campaign, increment_campaign_stat,
    create_send, update_send, get_send_by_tracking_id, get_campaign_send_stats, create_click_event
)

# Import from review crud module
from .review_crud import (
    get_review_config, upsert_review_config,
    get_incentives, get_incentive, get_default_incentive, create_incentive, update_incentive,
    delete_incentive, set_default_incentive,
    get_review_requests, get_review_request, get_review_request_by_token, create_review_request,
    update_review_request, get_review_request_stats,
    get_reviews, get_review, get_review_by_platform_id, create_review, update_review, get_review_stats,
    get_review_alerts, upsert_review_alert,
    get_review_sources, get_review_source, get_connected_review_sources, create_review_source,
    update_review_source, delete_review_source,
    create_sync_log, update_sync_log, get_sync_logs, get_latest_sync_logs
)

# Import from guarantee crud module
from .guarantee_crud import (
    get_guarantee_config, upsert_guarantee_config,
    get_guarantee_session, get_guarantee_session_by_reservation, get_guarantee_session_by_checkout,
    create_guarantee_session, update_guarantee_session, get_guarantee_sessions,
    create_noshow_charge, get_noshow_charges, get_guarantee_stats
)
