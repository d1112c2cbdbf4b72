import os, sys, pytest
# Ensure project root and backend directory are on path so 'app' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from app import create_app, get_db
from app.models.authz import Base


@pytest.fixture(scope='session', autouse=True)
def app_instance(tmp_path_factory):
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    upload_dir = tmp_path_factory.mktemp('uploads')
    app = create_app({'UPLOAD_DIR': str(upload_dir), 'ORDER_MODERATION_ENABLED': False})
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
    # a failed test may leave the shared session mid-transaction
    get_db().rollback()


@pytest.fixture()
def moderation(app_instance):
    app_instance.config['ORDER_MODERATION_ENABLED'] = True
    yield app_instance
    app_instance.config['ORDER_MODERATION_ENABLED'] = False
