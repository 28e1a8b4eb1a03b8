from errors import InsufficientStock, MarketplaceError, UserNotFound


def test_default_and_custom_messages():
    assert UserNotFound().message == "User not found"
    assert InsufficientStock("Only 1 left").message == "Only 1 left"
    assert UserNotFound.status_code == 404
    assert isinstance(InsufficientStock(), MarketplaceError)
