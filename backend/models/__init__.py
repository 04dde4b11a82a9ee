from models.users import User
from models.store import Store
from models.product import Category, Product, StoreProduct
from models.deal import Deal, DealType, StoreDeal, DealProduct
from models.cart import Cart, CartItem
from models.payment import PaymentMethod
from models.order import Order, OrderStatus
from models.log import Log
