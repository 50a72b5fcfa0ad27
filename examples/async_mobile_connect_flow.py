import asyncio
import contextlib
import os

from pydantic import SecretStr

from coreason_mobile_connect import MemoryCache, MobileConnectConfig, MobileConnectInterface, ResponseType


async def main() -> None:
    """
    Walks through a Mobile Connect login from a stateless web handler's point of view.
    Includes:
    - Discovery with the result cached under an sdk_session id
    - Building the authorization URL from that sdk_session
    - Resuming from the operator's redirect with handle_url_redirect
    """
    print(">>> Starting Mobile Connect Flow Example")

    config = MobileConnectConfig(
        client_id=os.getenv("COREASON_MC_CLIENT_ID", "example-client"),
        client_secret=SecretStr(os.getenv("COREASON_MC_CLIENT_SECRET", "example-secret")),
        discovery_url=os.getenv("COREASON_MC_DISCOVERY_URL", "https://discovery.sandbox.mobileconnect.io/v2/discovery"),
        redirect_url=os.getenv("COREASON_MC_REDIRECT_URL", "https://localhost:8001/mobileconnect.html"),
        pii_salt=SecretStr("super-secret-salt-for-pii-hashing"),
        http_timeout=5.0,
    )

    # The cache must outlive a single request in a real web app
    cache = MemoryCache()

    async with MobileConnectInterface(config, cache=cache) as mobile_connect:
        status = await mobile_connect.attempt_discovery(msisdn="+447700900000")
        print(f">>> Discovery: {status.response_type} {status.error_code or ''}")

        if status.response_type is ResponseType.OPERATOR_SELECTION:
            print(f">>> Send the user to the operator selection page: {status.url}")
            return
        if status.response_type is not ResponseType.START_AUTHENTICATION or status.sdk_session is None:
            # In a run without sandbox credentials, discovery fails here
            print(f">>> Discovery did not identify an operator: {status.error_message}")
            return

        sdk_session = status.sdk_session
        auth = await mobile_connect.start_authentication(sdk_session)
        print(f">>> Redirect the user to: {auth.url}")

        # The operator redirects back with ?code=...&state=...
        redirected_url = input(">>> Paste the redirected URL: ").strip()
        result = await mobile_connect.handle_url_redirect(
            redirected_url, sdk_session, expected_state=auth.state, expected_nonce=auth.nonce
        )

        if result.response_type is ResponseType.COMPLETE and result.token_response:
            print(f">>> Id token validation: {result.token_response.id_token_validation_result}")
            print(f">>> Access token validation: {result.token_response.access_token_validation_result}")
        else:
            print(f">>> Authentication failed: {result.error_code} {result.error_message or ''}")


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())
