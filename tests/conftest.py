import pytest

from config import IoTConfig


@pytest.fixture
def iot_config():
    return IoTConfig(
        host="example-ats.iot.us-east-2.amazonaws.com",
        port=8883,
        region="us-east-2",
        client_id="rpi-01-telemetry",
        thing_name="rpi-01",
        thing_type_name="sensor",
        ca_cert="/certs/AmazonRootCA1.pem",
        client_cert="/certs/rpi-01-certificate.pem.crt",
        private_key="/certs/rpi-01-private.pem.key",
    )
