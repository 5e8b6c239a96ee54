from medstock.core.rbac import ClinicPerm, has_perm
from medstock.db.init_db import ensure_admin, seed_permissions, seed_roles
from medstock.models import Permission, Role, User


def test_seeding_is_idempotent(db):
    for _ in range(2):
        seed_permissions(db)
        seed_roles(db)

    codes = {p.code for p in db.query(Permission).all()}
    assert codes == {p.value for p in ClinicPerm}

    roles = {r.name: r for r in db.query(Role).all()}
    assert set(roles) == {"Clinic Pharmacist", "Clinic Store Keeper", "Clinic Nurse"}
    assert len(roles["Clinic Pharmacist"].permissions) == len(ClinicPerm)


def test_seeded_roles_drive_permission_checks(db):
    seed_permissions(db)
    seed_roles(db)
    nurse_role = db.query(Role).filter_by(name="Clinic Nurse").one()
    nurse = User(name="Nurse", email="nurse@clinic.test", roles=[nurse_role])
    db.add(nurse)
    db.flush()

    assert has_perm(nurse, ClinicPerm.STOCK_RESERVE)
    assert has_perm(nurse, "clinic.stock.view")
    assert not has_perm(nurse, ClinicPerm.RECEIVING_POST)


def test_ensure_admin_reuses_existing_user(db):
    first = ensure_admin(db, "boss@clinic.test")
    again = ensure_admin(db, "boss@clinic.test")

    assert first.id == again.id
    assert first.is_admin is True
    assert first.name == "boss"
    assert db.query(User).count() == 1
    assert has_perm(first, ClinicPerm.STOCK_ADJUST)
