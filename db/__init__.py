from .db import (
    Base,
    create_all,
    dispose_engine,
    get_engine,
    get_session,
    insert_household,
    get_household,
    insert_user,
    fetch_primary_contact_point,
    save_push_subscription,
    clear_push_subscription,
    insert_contact,
    fetch_owned_contacts,
    fetch_watcher_household_ids,
    fetch_contact_statuses,
    update_household_status,
    insert_invite,
    get_invite,
    add_invite_recipient,
    fetch_invite_recipients,
    record_invite_response,
    fetch_delivery_recipients,
    insert_delivery_log,
    fetch_delivery_logs,
)  # noqa: F401
