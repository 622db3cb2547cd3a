"""CRM Service Module.

Facebook Page helpdesk services.

Submodule Structure:
    crm/
    └── inbox/   - Page credentials, conversation mirror, webhook events,
                   live fetches and reply relay
"""
