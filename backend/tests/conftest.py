import os, sys, pytest
# Ensure the backend directory is on path so 'ticketops' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from ticketops import create_app, get_db
from ticketops.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import ticketops.models.audit  # noqa: F401
import ticketops.models.site  # noqa: F401
import ticketops.models.asset  # noqa: F401
import ticketops.models.sla_policy  # noqa: F401
import ticketops.models.ticket  # noqa: F401
import ticketops.models.requisition  # noqa: F401
import ticketops.models.rma  # noqa: F401
import ticketops.models.client_registration  # noqa: F401
import ticketops.models.stock  # noqa: F401
import ticketops.models.worklog  # noqa: F401
import ticketops.models.asset_update_request  # noqa: F401

@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app()
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app

@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()

@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance
