import pytest

from config import Config
from errors import ConfigError


def test_from_env_reads_values():
    config = Config.from_env({
        'APP_ENV': 'Production',
        'SECRET_KEY': 'prod-secret',
        'MONGO_URI': 'mongodb://db:27017',
        'ADMIN_API_KEY': 'admin',
        'TAX_RATE': '0.16',
        'PORT': '8080',
        'ENVIA_ORIGIN_CITY': 'Coatepec',
    })
    assert config.is_production
    assert config.demo_mode is False
    assert config.tax_rate == 0.16
    assert config.port == 8080
    assert config.origin['city'] == 'Coatepec'
    assert config.origin['postal_code'] == '91000'
    assert config.validate() is config


def test_placeholders_count_as_unset():
    config = Config.from_env({'RESEND_API_KEY': 'your-resend-api-key', 'ENVIA_API_KEY': ''})
    assert config.resend_api_key is None
    assert not config.email_configured
    assert not config.carrier_configured
    assert config.demo_mode is True


def test_demo_mode_flag():
    assert Config.from_env({'MONGO_URI': 'mongodb://x', 'DEMO_MODE': 'yes'}).demo_mode is True
    assert Config.from_env({'DEMO_MODE': 'false'}).demo_mode is False


def test_production_refuses_demo_data():
    with pytest.raises(ConfigError):
        Config(env='production', secret_key='s', demo_mode=False).validate()
    with pytest.raises(ConfigError):
        Config(env='production', mongo_uri='mongodb://db').validate()
    assert Config(env='production', secret_key='s', demo_mode=True).validate()


def test_public_hides_secrets():
    public = Config(admin_api_key='k', resend_api_key='r').public()
    assert 'admin_api_key' not in public
    assert public['email_configured'] is True


def test_payment_and_callback_secrets():
    config = Config.from_env({
        'STRIPE_SECRET_KEY': 'sk_live_' + 'a' * 24,
        'STRIPE_WEBHOOK_SECRET': 'whsec_abc',
        'CALLBACK_SECRET': 'cb',
        'ADMIN_API_KEY': 'admin',
    })
    assert config.payments_configured
    assert config.stripe_webhook_secret == 'whsec_abc'
    assert config.callback_secret == 'cb'
    public = config.public()
    assert public['payments_configured'] is True
    assert 'stripe_secret_key' not in public
    assert 'callback_secret' not in public
