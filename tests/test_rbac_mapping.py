from actions import ACTION_HANDLERS
import auth


def test_all_action_handlers_have_rbac_mapping() -> None:
    missing: list[str] = []
    for k in ACTION_HANDLERS.keys():
        ku = str(k or "").upper().strip()
        if not ku:
            continue
        if ku in auth.PUBLIC_ACTIONS:
            continue
        if ku not in auth.STATIC_RBAC_PERMISSIONS:
            missing.append(ku)

    assert missing == []


def test_rbac_table_has_no_stale_actions() -> None:
    stale = sorted(set(auth.STATIC_RBAC_PERMISSIONS) - set(ACTION_HANDLERS))
    assert stale == []


def test_rbac_roles_are_known() -> None:
    for action, roles in auth.STATIC_RBAC_PERMISSIONS.items():
        assert roles, action
        assert set(roles) <= auth.KNOWN_ROLES, action


def test_admin_only_actions() -> None:
    assert auth.STATIC_RBAC_PERMISSIONS["ONBOARDING_RESET"] == ["ADMIN"]
    assert auth.STATIC_RBAC_PERMISSIONS["INTERVIEW_QUESTIONS_UPSERT"] == ["ADMIN"]
    assert "EMPLOYEE" not in auth.STATIC_RBAC_PERMISSIONS["OFFER_LETTER_UPLOAD"]
    assert "EMPLOYEE" not in auth.STATIC_RBAC_PERMISSIONS["ID_CARD_GENERATE"]
