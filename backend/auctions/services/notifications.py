"""Email notifications sent after an auction settles."""
import logging

from django.conf import settings
from django.core.mail import send_mail

from auctions.models import SalePayment

logger = logging.getLogger(__name__)


def notify_seller_of_sale(sale_id) -> bool:
    sale = SalePayment.objects.select_related("auction", "seller", "buyer").filter(pk=sale_id).first()
    if sale is None or not sale.seller.email:
        return False

    if sale.transfer_status == SalePayment.TransferStatus.AUTOMATIC:
        payout_line = f"${sale.seller_amount} has been routed to your connected account."
    elif sale.transfer_status == SalePayment.TransferStatus.PENDING:
        payout_line = f"A payout of ${sale.seller_amount} has been queued to your connected account."
    else:
        payout_line = (
            f"Your payout of ${sale.seller_amount} could not be sent automatically. "
            "Please finish your payment setup so we can transfer the funds."
        )

    try:
        send_mail(
            subject=f"Your auction \"{sale.auction.title}\" has sold",
            message=(
                f"Hi {sale.seller.username},\n\n"
                f"Your auction \"{sale.auction.title}\" sold for ${sale.amount}.\n"
                f"Platform fee: ${sale.platform_fee}\n"
                f"{payout_line}\n"
            ),
            from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
            recipient_list=[sale.seller.email],
            fail_silently=False,
        )
    except Exception:
        logger.exception("Failed to send sale notification for auction %s", sale.auction_id)
        return False
    return True
